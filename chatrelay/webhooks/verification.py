"""Webhook verification — subscription handshake and payload signatures.

Security contract:
- Token and signature comparisons use hmac.compare_digest() (constant-time)
- Handshake succeeds only for hub.mode == "subscribe" and a matching token
- Signatures (X-Hub-Signature-256: sha256=<hex HMAC of raw body>) are
  checked only when an app secret is configured
"""

from __future__ import annotations

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
_SIGNATURE_PREFIX = "sha256="


def verify_subscription(
    mode: str | None,
    token: str | None,
    challenge: str | None,
    expected_token: str,
) -> str | None:
    """Check a GET /webhook handshake.

    Returns:
        The challenge to echo back, or None if the handshake is refused
    """
    if mode != "subscribe" or token is None or not expected_token:
        return None
    if not hmac.compare_digest(token.encode("utf-8"), expected_token.encode("utf-8")):
        logger.warning("Webhook verification refused: token mismatch")
        return None
    logger.info("Webhook verified")
    return challenge or ""


def verify_signature(body: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Verify the provider's HMAC-SHA256 signature of the raw body.

    With no app secret configured there is nothing to verify against and
    every payload is accepted.
    """
    if not app_secret:
        return True
    if not signature_header or not signature_header.startswith(_SIGNATURE_PREFIX):
        return False

    expected = hmac.new(
        app_secret.encode("utf-8"),
        body,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature_header[len(_SIGNATURE_PREFIX):])
