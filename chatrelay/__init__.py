"""Chat relay — website visitors to a single business owner over WhatsApp.

Visitors open a session from the browser, their messages are relayed to the
owner through the WhatsApp Cloud API, and the owner's replies come back via
the provider webhook and are pushed to the visitor over a WebSocket.
"""

__version__ = "0.1.0"
