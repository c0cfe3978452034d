from __future__ import annotations
import asyncio
import contextlib
import secrets
import time
from typing import Callable
import structlog
from reward_tracker.backends.base import Backend
from reward_tracker.config import Settings
from reward_tracker.session.resolver import RoleResolver
from reward_tracker.session.store import SessionState, SessionStore

log = structlog.get_logger()

# a client cannot leave these states without signing in again
ENDED = (SessionState.ANONYMOUS, SessionState.UNRESOLVED)


class SessionRegistry:
    """
    Owns the SessionStore of every client session, keyed by an opaque session id.

    Stores that ended (signed out, or signed in without a usable role) and
    stores not touched for `session_idle_minutes` are closed by prune(), which
    runs on every open() and periodically while the sweeper is started.
    """

    def __init__(
        self,
        backend: Backend,
        resolver: RoleResolver,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self._resolver = resolver
        self._settings = settings
        self._clock = clock
        self._idle_seconds = settings.session_idle_minutes * 60
        self._stores: dict[str, SessionStore] = {}
        self._last_seen: dict[str, float] = {}
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._stores)

    def get(self, session_id: str | None) -> SessionStore | None:
        if not session_id:
            return None
        store = self._stores.get(session_id)
        if store is not None:
            self._last_seen[session_id] = self._clock()
        return store

    async def open(self) -> tuple[str, SessionStore]:
        await self.prune()
        s = self._settings
        store = SessionStore(
            self._backend.auth_client(),
            self._resolver,
            session_timeout=s.session_timeout,
            debounce=s.role_debounce_seconds,
            monitor_interval=s.session_check_interval,
            warning_minutes=tuple(s.expiry_warning_minutes),
        )
        session_id = secrets.token_urlsafe(32)
        self._stores[session_id] = store
        self._last_seen[session_id] = self._clock()
        return session_id, store

    async def close(self, session_id: str) -> None:
        store = self._stores.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if store is not None:
            await store.close()

    async def prune(self) -> int:
        """Close stores that ended or went idle; returns how many were closed."""
        now = self._clock()
        ended, idle = [], []
        for sid, store in self._stores.items():
            if store.snapshot.state in ENDED:
                ended.append(sid)
            elif now - self._last_seen.get(sid, now) >= self._idle_seconds:
                idle.append(sid)
        for sid in ended + idle:
            await self.close(sid)
        if ended or idle:
            log.info("sessions_pruned", ended=len(ended), idle=len(idle), remaining=len(self._stores))
        return len(ended) + len(idle)

    def start_sweeper(self, interval: float) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep(interval))

    async def _sweep(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.prune()
            except Exception:
                log.warning("session_prune_failed", exc_info=True)

    async def close_all(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        for sid in list(self._stores):
            await self.close(sid)
        log.info("sessions_closed")
