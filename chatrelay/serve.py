"""FastAPI application wiring for the chat relay.

Builds the component graph explicitly (store, event bus, provider client,
dispatcher, reconciler, scheduler), keeps it on ``app.state`` and registers
the routes. ``TESTING=1`` skips the maintenance scheduler.

Run with ``python -m chatrelay.serve``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatrelay import __version__
from chatrelay.api import register_api_routes
from chatrelay.config import RelaySettings, load_settings
from chatrelay.errors import RelayError
from chatrelay.events import SessionEventBus
from chatrelay.gateway import register_gateway_routes
from chatrelay.provider.client import ProviderClient, WhatsAppClient
from chatrelay.relay.outbound import OutboundDispatcher
from chatrelay.scheduler import SessionMaintenanceScheduler
from chatrelay.sessions.store import SessionStore
from chatrelay.webhooks.handlers import register_webhook_routes
from chatrelay.webhooks.reconciler import InboundReconciler

logger = logging.getLogger(__name__)


def create_app(
    settings: RelaySettings | None = None,
    client: ProviderClient | None = None,
    store: SessionStore | None = None,
    bus: SessionEventBus | None = None,
) -> FastAPI:
    """Create the relay application with its own store and event bus."""
    if settings is None:
        settings = load_settings()
    if store is None:
        store = SessionStore()
    if bus is None:
        bus = SessionEventBus()
    if client is None:
        client = WhatsAppClient(settings)

    dispatcher = OutboundDispatcher(store, client, settings)
    reconciler = InboundReconciler(store, bus, client)
    scheduler = SessionMaintenanceScheduler(store, client, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        testing = os.environ.get("TESTING") == "1"
        if not settings.is_configured:
            logger.warning("WhatsApp provider not configured, sends will fail")
        if not testing:
            scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            await client.aclose()

    app = FastAPI(title="Chat Relay", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.bus = bus
    app.state.client = client
    app.state.dispatcher = dispatcher
    app.state.reconciler = reconciler
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def handle_relay_error(request: Request, exc: RelayError):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    register_api_routes(app, store, dispatcher, settings)
    register_webhook_routes(app, reconciler, settings)
    register_gateway_routes(app, bus, store)
    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Chat relay %s listening, public URL %s", __version__, settings.backend_url)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
