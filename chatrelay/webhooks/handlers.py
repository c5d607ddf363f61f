"""Webhook HTTP handlers — FastAPI routes for the provider callback.

POST /webhook:
1. Reads raw body (needed for signature verification)
2. Verifies the signature when an app secret is configured (401 otherwise)
3. Decodes the envelope into typed events (500 if malformed)
4. Reconciles events one by one
5. Returns 200 regardless of per-event outcome, so the provider does not
   redeliver the whole batch

GET /webhook answers the provider's subscription handshake.
"""

from __future__ import annotations

import json
import logging
import time
from collections import Counter

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from chatrelay.config import RelaySettings
from chatrelay.errors import ValidationError
from chatrelay.webhooks.parser import parse_webhook
from chatrelay.webhooks.reconciler import InboundReconciler
from chatrelay.webhooks.verification import (
    SIGNATURE_HEADER,
    verify_signature,
    verify_subscription,
)

logger = logging.getLogger(__name__)


def register_webhook_routes(
    app: FastAPI,
    reconciler: InboundReconciler,
    settings: RelaySettings,
) -> None:
    """Register the provider webhook endpoints on the FastAPI app."""
    counts: Counter[str] = Counter()

    def _audit(status: str, events: int = 0, detail: str = "") -> None:
        counts[status] += 1
        logger.info(
            "WEBHOOK_AUDIT status=%s events=%d count=%d %s",
            status,
            events,
            counts[status],
            detail,
        )

    @app.get("/webhook")
    async def verify_webhook(request: Request):
        """Provider subscription handshake."""
        params = request.query_params
        challenge = verify_subscription(
            params.get("hub.mode"),
            params.get("hub.verify_token"),
            params.get("hub.challenge"),
            settings.verify_token,
        )
        if challenge is None:
            return PlainTextResponse("Forbidden", status_code=403)
        return PlainTextResponse(challenge, status_code=200)

    @app.post("/webhook")
    async def receive_webhook(request: Request):
        """Receive statuses and owner replies."""
        start = time.time()
        body = await request.body()

        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), settings.app_secret):
            _audit("signature_failed")
            return JSONResponse({"status": "unauthorized"}, status_code=401)

        try:
            parsed = parse_webhook(json.loads(body))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            _audit("malformed", detail=type(e).__name__)
            return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

        report = await reconciler.handle_batch(parsed.events)
        _audit(
            "processed",
            events=len(parsed.events),
            detail=" ".join(f"{k}={v}" for k, v in report.to_dict().items()),
        )
        if parsed.failed:
            logger.warning("Webhook had %d malformed item(s)", parsed.failed)

        logger.debug("Webhook processed in %.1fms", (time.time() - start) * 1000)
        return JSONResponse({"status": "received"}, status_code=200)

    @app.get("/webhook/status")
    async def webhook_status():
        """Webhook receive counts."""
        return {"counts": dict(counts)}

    logger.info("Webhook routes registered: /webhook")
