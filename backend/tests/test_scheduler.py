"""Tests for the recurring automation scan (onboarding/scheduler.py)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from onboarding.automation import ScanReport
from onboarding.locks import HireLockRegistry
from onboarding.scheduler import AutomationScheduler


class _SlowEngine:
    """Scan blocks until released so overlapping ticks can be observed."""

    def __init__(self):
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.scans = 0

    async def scan(self) -> ScanReport:
        self.scans += 1
        self.started.set()
        await self.release.wait()
        return ScanReport(started_at=datetime.now(timezone.utc))


class _FailingEngine:
    async def scan(self) -> ScanReport:
        raise RuntimeError("database unavailable")


@pytest.mark.asyncio
class TestAutomationScheduler:

    async def test_tick_skipped_while_scan_running(self):
        engine = _SlowEngine()
        scheduler = AutomationScheduler(engine, interval=3600)

        first = asyncio.create_task(scheduler.tick())
        await engine.started.wait()

        assert scheduler.scan_in_progress
        assert await scheduler.tick() is None
        assert scheduler.skipped_ticks == 1

        engine.release.set()
        report = await first
        assert report is not None
        assert scheduler.last_report is report
        assert engine.scans == 1

    async def test_failed_scan_returns_none_and_keeps_running(self):
        scheduler = AutomationScheduler(_FailingEngine(), interval=3600)
        assert await scheduler.tick() is None
        assert not scheduler.scan_in_progress
        assert scheduler.last_report is None

    async def test_tick_discards_idle_locks(self):
        engine = _SlowEngine()
        engine.release.set()
        locks = HireLockRegistry()
        locks.lock_for("h1")
        scheduler = AutomationScheduler(engine, interval=3600, locks=locks)

        await scheduler.tick()
        assert locks.discard_idle() == 0

    async def test_start_and_stop_are_idempotent(self):
        engine = _SlowEngine()
        engine.release.set()
        scheduler = AutomationScheduler(engine, interval=3600)

        scheduler.start()
        scheduler.start()
        assert scheduler.is_running
        await asyncio.wait_for(engine.started.wait(), timeout=1)

        await scheduler.stop()
        await scheduler.stop()
        assert not scheduler.is_running
        assert engine.scans == 1
