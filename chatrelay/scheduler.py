"""Session maintenance scheduler — periodic keepalive and eviction sweep.

Runs every ``maintenance_interval`` seconds (5 minutes by default):
1. Sessions inactive for 23h..24h get a keepalive template so the
   provider window is refreshed before it lapses
2. Sessions inactive for more than 30 days are evicted

Keepalive failures are logged, never escalated. The sweep works on a
snapshot of the store, so sessions mutated or evicted meanwhile are fine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from chatrelay.config import RelaySettings
from chatrelay.errors import ProviderError
from chatrelay.provider.client import ProviderClient
from chatrelay.provider.messages import TemplateContent
from chatrelay.sessions.models import WINDOW_SECONDS, ChatSession
from chatrelay.sessions.store import RETENTION_SECONDS, SessionStore

logger = logging.getLogger(__name__)

KEEPALIVE_AFTER_SECONDS = 23 * 3600


@dataclass
class SweepReport:
    refreshed: int = 0
    evicted: int = 0
    failed: int = 0


class SessionMaintenanceScheduler:
    """Background maintenance loop for the session store."""

    def __init__(
        self,
        store: SessionStore,
        client: ProviderClient,
        settings: RelaySettings,
    ):
        self._store = store
        self._client = client
        self._settings = settings
        self._task: asyncio.Task | None = None
        self._sweeps = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def sweeps(self) -> int:
        return self._sweeps

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run_loop(), name="session-maintenance"
        )
        logger.info(
            "Session maintenance STARTED (interval=%ss)",
            self._settings.maintenance_interval,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Session maintenance STOPPED (%d sweeps)", self._sweeps)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.maintenance_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Session maintenance sweep failed")

    async def sweep(self, now: float | None = None) -> SweepReport:
        """One pass over every session."""
        now = time.time() if now is None else now
        report = SweepReport()

        for session in self._store.snapshot():
            inactive = session.inactive_for(now)

            if inactive > RETENTION_SECONDS:
                if self._store.evict(session.session_id):
                    report.evicted += 1
                continue

            if KEEPALIVE_AFTER_SECONDS <= inactive < WINDOW_SECONDS:
                if await self._keepalive(session):
                    report.refreshed += 1
                else:
                    report.failed += 1

        self._sweeps += 1
        if report.refreshed or report.evicted or report.failed:
            logger.info(
                "Maintenance sweep: refreshed=%d evicted=%d failed=%d",
                report.refreshed,
                report.evicted,
                report.failed,
            )
        return report

    async def _keepalive(self, session: ChatSession) -> bool:
        content = TemplateContent(
            name=self._settings.keepalive_template,
            language=self._settings.template_language,
        )
        try:
            message_id = await self._client.send(content, session_id=session.session_id)
        except ProviderError as e:
            logger.warning(
                "Keepalive failed for session %s: %s",
                session.session_id[:8],
                e,
            )
            return False

        # An owner answering the latest keepalive is routed back to this session.
        self._store.record_keepalive(session.session_id, message_id)
        self._store.touch(session.session_id)
        logger.info("Keepalive sent for session %s (%s)", session.session_id[:8], message_id)
        return True
