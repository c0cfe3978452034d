from __future__ import annotations
import asyncio
import contextlib
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable
import structlog
from reward_tracker.backends.base import Session

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionMonitor:
    """
    Periodic session-expiry check owned by one SessionStore.

    Runs as a cancellable task while the store is authenticated. Each
    threshold (minutes before expiry) warns at most once until reset(),
    which the store calls when the token is refreshed.
    """

    def __init__(
        self,
        get_session: Callable[[], Awaitable[Session | None]],
        on_warning: Callable[[int], None],
        *,
        interval: float = 60.0,
        thresholds: Iterable[int] = (5, 1),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._get_session = get_session
        self._on_warning = on_warning
        self._interval = interval
        self._thresholds = sorted(set(thresholds))
        self._sleep = sleep
        self._now = now
        self._warned: set[int] = set()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        if task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def reset(self) -> None:
        self._warned.clear()

    async def check(self) -> int | None:
        """Warn if a threshold was crossed; returns whole minutes left, or None without a session."""
        session = await self._get_session()
        if session is None:
            return None
        seconds = session.seconds_left(self._now())
        if seconds <= 0:
            return 0
        minutes = math.ceil(seconds / 60)
        for threshold in self._thresholds:
            if minutes <= threshold and threshold not in self._warned:
                # crossing a smaller threshold also covers the larger ones
                self._warned.update(t for t in self._thresholds if t >= threshold)
                log.info("session_expiry_warning", minutes_left=minutes, user_id=session.user.id)
                self._on_warning(minutes)
                break
        return minutes

    async def _run(self) -> None:
        while True:
            try:
                await self.check()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.warning("session_check_failed", exc_info=True)
            await self._sleep(self._interval)
