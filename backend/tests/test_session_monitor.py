import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
import pytest
from reward_tracker.session.monitor import SessionMonitor
from fakes import make_session

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

class Harness:
    def __init__(self, ttl=timedelta(minutes=10)):
        self.now = START
        self.session = replace(make_session("ada"), expires_at=START + ttl)
        self.warnings = []

    async def get_session(self):
        return self.session

    def monitor(self, **kw):
        return SessionMonitor(self.get_session, self.warnings.append, now=lambda: self.now, **kw)

@pytest.mark.asyncio
async def test_each_threshold_warns_once():
    h = Harness()
    m = h.monitor(thresholds=(5, 1))
    assert await m.check() == 10
    assert h.warnings == []

    h.now = START + timedelta(minutes=5, seconds=30)
    assert await m.check() == 5
    assert await m.check() == 5
    assert h.warnings == [5]

    h.now = START + timedelta(minutes=9, seconds=30)
    assert await m.check() == 1
    assert h.warnings == [5, 1]

@pytest.mark.asyncio
async def test_jumping_past_thresholds_warns_once():
    h = Harness()
    m = h.monitor(thresholds=(5, 1))
    h.now = START + timedelta(minutes=9, seconds=30)
    await m.check()
    h.now = START + timedelta(minutes=9, seconds=40)
    await m.check()
    assert h.warnings == [1]

@pytest.mark.asyncio
async def test_reset_rearms_warnings():
    h = Harness()
    m = h.monitor(thresholds=(5,))
    h.now = START + timedelta(minutes=6)
    await m.check()
    m.reset()
    await m.check()
    assert h.warnings == [4, 4]

@pytest.mark.asyncio
async def test_expired_and_missing_sessions():
    h = Harness()
    m = h.monitor()
    h.now = START + timedelta(minutes=11)
    assert await m.check() == 0
    h.session = None
    assert await m.check() is None
    assert h.warnings == []

@pytest.mark.asyncio
async def test_task_start_and_stop():
    h = Harness()
    m = h.monitor(interval=60)
    m.start()
    assert m.running
    await asyncio.sleep(0)
    await m.stop()
    assert not m.running
    m.cancel()  # no-op when idle
