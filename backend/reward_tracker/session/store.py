from __future__ import annotations
import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable
import structlog

from reward_tracker.backends.base import AuthClient, AuthEvent, Principal, Session
from reward_tracker.errors import AuthError, NetworkError
from reward_tracker.services.retry import with_timeout
from reward_tracker.session.monitor import SessionMonitor
from reward_tracker.session.resolver import Role, RoleResolver

log = structlog.get_logger()


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    RESOLVING_ROLE = "resolving_role"
    AUTHENTICATED = "authenticated"
    UNRESOLVED = "unresolved"
    ANONYMOUS = "anonymous"


TRANSIENT = (SessionState.INITIALIZING, SessionState.RESOLVING_ROLE)


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    role: Role | None = None
    principal: Principal | None = None
    expires_at: datetime | None = None
    error: str | None = None
    expiry_warning: str | None = None

    def allows(self, role: Role) -> bool:
        return self.state is SessionState.AUTHENTICATED and self.role is role


Subscriber = Callable[[SessionSnapshot], None]


class SessionStore:
    """
    Who the current user is and what they may do, for one client session.

    initializing -> resolving_role -> authenticated(role) | unresolved
                 -> anonymous
    Every auth event re-runs resolution from the event's session. Each event
    takes a new generation number; a result computed for an older generation
    is dropped, so the newest event always wins. A role query that fails
    leaves the store unresolved: no role is kept or assumed.
    """

    def __init__(
        self,
        auth: AuthClient,
        resolver: RoleResolver,
        *,
        session_timeout: float = 10.0,
        debounce: float = 2.0,
        monitor_interval: float = 60.0,
        warning_minutes: tuple[int, ...] = (5, 1),
        clock: Callable[[], float] = time.monotonic,
    ):
        self._auth = auth
        self._resolver = resolver
        self._session_timeout = session_timeout
        self._debounce = debounce
        self._clock = clock
        self._snapshot = SessionSnapshot(SessionState.INITIALIZING)
        self._settled = asyncio.Event()
        self._subscribers: list[Subscriber] = []
        self._generation = 0
        self._last_event: tuple[tuple, float] | None = None
        self._closed = False
        self._monitor = SessionMonitor(
            auth.get_session,
            self._on_expiry_warning,
            interval=monitor_interval,
            thresholds=warning_minutes,
        )
        self._unsubscribe_auth = auth.on_session_change(self._on_auth_event)

    # ---- read/subscribe ----

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def access_token(self) -> str | None:
        session = self._auth.current
        return session.access_token if session else None

    @property
    def monitor(self) -> SessionMonitor:
        return self._monitor

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def wait_settled(self, timeout: float | None = None) -> SessionSnapshot:
        """Wait until the store leaves its transient states; gives up after `timeout`."""
        try:
            await asyncio.wait_for(self._settled.wait(), timeout if timeout is not None else self._session_timeout)
        except asyncio.TimeoutError:
            log.warning("session_not_settled", state=self._snapshot.state.value)
        return self._snapshot

    def require(self, role: Role) -> SessionSnapshot:
        snap = self._snapshot
        if snap.state is not SessionState.AUTHENTICATED:
            raise AuthError("Sign in required")
        if snap.role is not role:
            raise AuthError(f"{role.value} access required")
        return snap

    # ---- operations ----

    async def start(self) -> SessionSnapshot:
        gen = self._next_generation()
        self._set(gen, SessionSnapshot(SessionState.INITIALIZING))
        try:
            session = await with_timeout(self._auth.get_session, self._session_timeout, op="session fetch")
        except Exception as e:
            # fail safe to logged-out
            log.warning("session_fetch_failed", error=str(e), timeout=isinstance(e, NetworkError) and e.timeout)
            session = None
        await self._apply(session, gen)
        return self._snapshot

    async def sign_in(self, email: str, password: str) -> SessionSnapshot:
        await self._auth.sign_in_with_password(email, password)
        return self._snapshot

    async def refresh(self) -> SessionSnapshot:
        await self._auth.refresh_session()
        return self._snapshot

    async def update_profile(self, display_name: str) -> SessionSnapshot:
        await self._auth.update_user(display_name=display_name)
        return self._snapshot

    async def sign_out(self) -> None:
        principal = self._snapshot.principal
        gen = self._next_generation()
        self._set(gen, SessionSnapshot(SessionState.ANONYMOUS))
        self._monitor.cancel()
        if principal is not None:
            self._resolver.forget(principal.id)
        try:
            await self._auth.sign_out()
        except Exception as e:
            log.warning("backend_sign_out_failed", error=str(e), user_id=principal.id if principal else None, exc_info=True)

    async def close(self) -> None:
        self._closed = True
        self._unsubscribe_auth()
        await self._monitor.stop()
        self._subscribers.clear()

    # ---- internals ----

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    async def _on_auth_event(self, event: AuthEvent, session: Session | None) -> None:
        key = (event, session.user.id if session else None, session.access_token if session else None)
        now = self._clock()
        if self._last_event and self._last_event[0] == key and now - self._last_event[1] < self._debounce:
            log.debug("auth_event_debounced", auth_event=event.value)
            return
        self._last_event = (key, now)
        gen = self._next_generation()
        log.info("auth_event", auth_event=event.value, user_id=session.user.id if session else None)
        if event is AuthEvent.TOKEN_REFRESHED:
            self._monitor.reset()
        await self._apply(session, gen)

    async def _apply(self, session: Session | None, gen: int) -> None:
        if session is None:
            self._monitor.cancel()
            self._set(gen, SessionSnapshot(SessionState.ANONYMOUS))
            return
        current = self._snapshot
        same_principal = current.principal is not None and current.principal.id == session.user.id
        if not (same_principal and current.state is SessionState.AUTHENTICATED):
            self._set(gen, SessionSnapshot(SessionState.RESOLVING_ROLE, principal=session.user, expires_at=session.expires_at))
        try:
            role = await self._resolver.resolve(session.user.id, access_token=session.access_token)
        except Exception as e:
            log.warning("role_resolution_failed", user_id=session.user.id, error=str(e), exc_info=True)
            self._monitor.cancel()
            self._set(gen, SessionSnapshot(
                SessionState.UNRESOLVED,
                role=Role.UNRESOLVED,
                principal=session.user,
                expires_at=session.expires_at,
                error="Could not verify your account. Please sign in again.",
            ))
            return
        if role is Role.UNRESOLVED:
            self._monitor.cancel()
            self._set(gen, SessionSnapshot(
                SessionState.UNRESOLVED,
                role=Role.UNRESOLVED,
                principal=session.user,
                expires_at=session.expires_at,
                error="This account has no student or instructor profile.",
            ))
            return
        if self._set(gen, SessionSnapshot(SessionState.AUTHENTICATED, role=role, principal=session.user, expires_at=session.expires_at)):
            self._monitor.start()

    def _set(self, gen: int, snap: SessionSnapshot) -> bool:
        if self._closed or gen != self._generation:
            log.debug("stale_session_result_dropped", generation=gen, current=self._generation)
            return False
        if snap == self._snapshot:
            return True
        self._snapshot = snap
        if snap.state in TRANSIENT:
            self._settled.clear()
        else:
            self._settled.set()
        for callback in list(self._subscribers):
            callback(snap)
        return True

    def _on_expiry_warning(self, minutes: int) -> None:
        if self._snapshot.state is not SessionState.AUTHENTICATED:
            return
        message = f"Your session will expire in {minutes} minute{'s' if minutes != 1 else ''}. Please save your work."
        self._snapshot = replace(self._snapshot, expiry_warning=message)
        for callback in list(self._subscribers):
            callback(self._snapshot)
