"""In-memory stand-ins for the auth subsystem and role relations."""
import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from reward_tracker.backends.base import AuthClient, Principal, RowStore, Session
from reward_tracker.errors import AuthError

GOOD_PASSWORD = "pw-correct"

class Clock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

def make_session(user_id: str, ttl: timedelta = timedelta(hours=1)) -> Session:
    return Session(
        access_token=uuid.uuid4().hex,
        refresh_token=uuid.uuid4().hex,
        expires_at=datetime.now(timezone.utc) + ttl,
        user=Principal(id=user_id, email=f"{user_id}@example.com"),
    )

class FakeAuth(AuthClient):
    def __init__(self, ttl: timedelta = timedelta(hours=1)):
        super().__init__()
        self.ttl = ttl
        self.revoke_error: Exception | None = None
        self.revoked = 0

    async def _password_grant(self, email, password):
        if password != GOOD_PASSWORD:
            raise AuthError("Invalid credentials")
        return make_session(email, self.ttl)

    async def _refresh_grant(self, refresh_token):
        return make_session(self._session.user.id, self.ttl)

    async def _revoke(self, session):
        self.revoked += 1
        if self.revoke_error is not None:
            raise self.revoke_error

    async def _update_user(self, session, display_name):
        return replace(session.user, display_name=display_name)

class RoleRows(RowStore):
    """Answers role lookups from two id sets; optionally blocks or fails."""

    def __init__(self, admin=(), students=(), gate: asyncio.Event | None = None, error: Exception | None = None):
        self.ids = {"admin": set(admin), "students": set(students)}
        self.gate = gate
        self.error = error
        self.selects = 0

    async def select(self, table, *, eq=None, in_=None, order_by=None, descending=False, limit=None):
        self.selects += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        pid = (eq or {}).get("id")
        return [{"id": pid}] if pid in self.ids[table] else []

    async def insert(self, table, row):
        raise NotImplementedError

    async def update(self, table, values, *, eq):
        raise NotImplementedError

    async def delete(self, table, *, eq):
        raise NotImplementedError

    async def credit_balance(self, student_id, amount, description):
        raise NotImplementedError

    async def debit_balance(self, student_id, amount, description, *, kind="removed"):
        raise NotImplementedError
