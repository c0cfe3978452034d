from __future__ import annotations
import abc
import inspect
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping
import structlog
from reward_tracker.errors import AuthError, ValidationError

log = structlog.get_logger()

TABLES = ("students", "admin", "rewards", "goals", "transactions")


@dataclass(frozen=True)
class Principal:
    id: str
    email: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str
    expires_at: datetime
    user: Principal

    def seconds_left(self, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (self.expires_at - now).total_seconds()

    def expired(self, now: datetime | None = None) -> bool:
        return self.seconds_left(now) <= 0


class AuthEvent(str, Enum):
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    TOKEN_REFRESHED = "token_refreshed"
    USER_UPDATED = "user_updated"


SessionListener = Callable[[AuthEvent, "Session | None"], "Awaitable[None] | None"]


def check_table(table: str) -> str:
    if table not in TABLES:
        raise ValidationError(f"unknown relation: {table}")
    return table


class AuthClient(abc.ABC):
    """
    Auth subsystem as seen by one client session.

    Holds the current Session and notifies listeners, in emission order, on
    sign-in, sign-out, token refresh and profile updates.
    """

    def __init__(self) -> None:
        self._session: Session | None = None
        self._listeners: list[SessionListener] = []

    # ---- transport hooks ----

    @abc.abstractmethod
    async def _password_grant(self, email: str, password: str) -> Session: ...

    @abc.abstractmethod
    async def _refresh_grant(self, refresh_token: str) -> Session: ...

    @abc.abstractmethod
    async def _revoke(self, session: Session) -> None: ...

    @abc.abstractmethod
    async def _update_user(self, session: Session, display_name: str) -> Principal: ...

    # ---- public contract ----

    @property
    def current(self) -> Session | None:
        """Last known session, without checking expiry."""
        return self._session

    async def get_session(self) -> Session | None:
        session = self._session
        if session is None or not session.expired():
            return session
        try:
            return await self.refresh_session()
        except AuthError:
            log.info("session_expired", user_id=session.user.id)
            self._session = None
            await self._emit(AuthEvent.SIGNED_OUT, None)
            return None

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        session = await self._password_grant(email, password)
        self._session = session
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_out(self) -> None:
        session, self._session = self._session, None
        try:
            if session is not None:
                await self._revoke(session)
        finally:
            await self._emit(AuthEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> Session:
        if self._session is None:
            raise AuthError("No session to refresh")
        session = await self._refresh_grant(self._session.refresh_token)
        self._session = session
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def update_user(self, *, display_name: str) -> Principal:
        if self._session is None:
            raise AuthError("Not signed in")
        user = await self._update_user(self._session, display_name)
        self._session = replace(self._session, user=user)
        await self._emit(AuthEvent.USER_UPDATED, self._session)
        return user

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _emit(self, event: AuthEvent, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event, session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("session_listener_failed", auth_event=event.value)


class RowStore(abc.ABC):
    """
    Row access over the five relations plus the two atomic balance procedures.
    Rows are plain dicts keyed by column name.
    """

    @abc.abstractmethod
    async def select(
        self,
        table: str,
        *,
        eq: Mapping[str, Any] | None = None,
        in_: Mapping[str, Iterable[Any]] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]: ...

    @abc.abstractmethod
    async def insert(self, table: str, row: Mapping[str, Any]) -> dict: ...

    @abc.abstractmethod
    async def update(self, table: str, values: Mapping[str, Any], *, eq: Mapping[str, Any]) -> list[dict]: ...

    @abc.abstractmethod
    async def delete(self, table: str, *, eq: Mapping[str, Any]) -> int: ...

    @abc.abstractmethod
    async def credit_balance(self, student_id: str, amount: int, description: str) -> dict:
        """Add to the balance and append an `earned` row in one step. Returns {"balance", "transaction"}."""

    @abc.abstractmethod
    async def debit_balance(self, student_id: str, amount: int, description: str, *, kind: str = "removed") -> dict:
        """Take from the balance and append a `removed`/`spent` row in one step; never below zero."""

    async def select_one(self, table: str, **kwargs: Any) -> dict | None:
        rows = await self.select(table, limit=1, **kwargs)
        return rows[0] if rows else None


class Backend(abc.ABC):
    kind: str = "abstract"

    @abc.abstractmethod
    def auth_client(self) -> AuthClient: ...

    @abc.abstractmethod
    def rows(self, access_token: str | None = None) -> RowStore:
        """Row store acting with the given user's credentials."""

    @abc.abstractmethod
    async def provision_principal(self, email: str, password: str, display_name: str | None = None) -> Principal: ...

    @abc.abstractmethod
    async def delete_principal(self, principal_id: str) -> None:
        """Remove an auth principal; a missing one is not an error."""

    async def ping(self) -> bool:
        try:
            await self.rows().select("students", limit=1)
        except Exception:
            log.warning("backend_ping_failed", backend=self.kind, exc_info=True)
            return False
        return True

    async def close(self) -> None:
        return None
