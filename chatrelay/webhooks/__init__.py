"""Webhook inbound system.

Receives WhatsApp Cloud API callbacks (delivery statuses and owner replies),
verifies them, decodes them once at the boundary and reconciles them into
chat sessions.
"""
