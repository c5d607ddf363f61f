"""Tests for the session maintenance scheduler."""

from __future__ import annotations

import asyncio

import pytest

from chatrelay.errors import ProviderError
from chatrelay.provider.messages import TemplateContent
from chatrelay.scheduler import SessionMaintenanceScheduler
from chatrelay.sessions.models import SessionMessage, Sender

HOUR = 3600.0
DAY = 24 * HOUR
T0 = 1_000_000.0


@pytest.fixture
def scheduler(store, provider, settings):
    return SessionMaintenanceScheduler(store, provider, settings)


class TestSweep:
    """A single maintenance pass."""

    @pytest.mark.asyncio
    async def test_evicts_after_thirty_days(self, scheduler, store):
        session = store.create_session(now=T0)
        store.append_message(
            session.session_id,
            SessionMessage(id="M1", sender=Sender.CUSTOMER, content="hello", timestamp=T0),
        )
        store.record_correlation(session.session_id, "M1")
        session.last_activity = T0

        report = await scheduler.sweep(now=T0 + 31 * DAY)

        assert report.evicted == 1
        assert store.get(session.session_id) is None
        assert store.resolve("M1") is None

    @pytest.mark.asyncio
    async def test_keeps_recent_sessions(self, scheduler, store, provider):
        session = store.create_session(now=T0)

        report = await scheduler.sweep(now=T0 + 10 * HOUR)

        assert report.evicted == 0
        assert report.refreshed == 0
        assert provider.sent == []
        assert session.session_id in store

    @pytest.mark.asyncio
    async def test_keepalive_before_window_lapses(self, scheduler, store, provider, settings):
        session = store.create_session(now=T0)
        provider.script("K1")

        report = await scheduler.sweep(now=T0 + 23.5 * HOUR)

        assert report.refreshed == 1
        content, sid = provider.sent[0]
        assert isinstance(content, TemplateContent)
        assert content.name == settings.keepalive_template
        assert sid == session.session_id
        assert store.resolve("K1") == session.session_id
        assert session.last_activity > T0

    @pytest.mark.asyncio
    async def test_only_latest_keepalive_stays_routable(self, scheduler, store, provider):
        session = store.create_session(now=T0)
        store.record_correlation(session.session_id, "M1")
        provider.script("K1", "K2")

        await scheduler.sweep(now=T0 + 23.5 * HOUR)
        session.last_activity = T0
        await scheduler.sweep(now=T0 + 23.5 * HOUR)

        assert session.keepalive_id == "K2"
        assert session.correlation_ids == {"M1", "K2"}
        assert store.resolve("K1") is None
        assert store.resolve("K2") == session.session_id
        assert len(store.correlation) == 2

    @pytest.mark.asyncio
    async def test_no_keepalive_after_window(self, scheduler, store, provider):
        store.create_session(now=T0)

        report = await scheduler.sweep(now=T0 + 2 * DAY)

        assert report.refreshed == 0
        assert report.evicted == 0
        assert provider.sent == []

    @pytest.mark.asyncio
    async def test_keepalive_failure_is_counted(self, scheduler, store, provider):
        session = store.create_session(now=T0)
        provider.script(ProviderError("template rejected", http_status=400, code=132001))

        report = await scheduler.sweep(now=T0 + 23.5 * HOUR)

        assert report.failed == 1
        assert report.refreshed == 0
        assert session.last_activity == T0
        assert session.session_id in store

    @pytest.mark.asyncio
    async def test_sweep_counter(self, scheduler):
        await scheduler.sweep(now=T0)
        await scheduler.sweep(now=T0)
        assert scheduler.sweeps == 2


class TestLifecycle:
    """Background task start/stop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler):
        scheduler.start()
        assert scheduler.running
        scheduler.start()
        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scheduler):
        await scheduler.stop()
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_loop_runs_sweeps(self, store, provider, settings):
        scheduler = SessionMaintenanceScheduler(
            store, provider, settings.model_copy(update={"maintenance_interval": 0.01})
        )
        scheduler.start()
        for _ in range(100):
            if scheduler.sweeps:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()
        assert scheduler.sweeps >= 1
