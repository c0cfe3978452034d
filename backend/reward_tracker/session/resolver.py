from __future__ import annotations
import asyncio
import time
from enum import Enum
from typing import Callable
import structlog
from reward_tracker.backends.base import RowStore
from reward_tracker.services.retry import with_timeout

log = structlog.get_logger()


class Role(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"
    UNRESOLVED = "unresolved"


def _consume_exception(fut: asyncio.Future) -> None:
    # every waiter may have been cancelled; mark the failure as seen
    if not fut.cancelled():
        fut.exception()


class RoleResolver:
    """
    Maps a principal to its role by membership in the `admin` and `students`
    relations. Admin is checked first, so an account present in both is an admin.

    At most one query runs per principal at a time; callers arriving while it
    is in flight share its result. A result is reused for `debounce` seconds.
    Failures are never cached.
    """

    def __init__(
        self,
        rows_for: Callable[[str | None], RowStore],
        *,
        timeout: float = 8.0,
        debounce: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._rows_for = rows_for
        self._timeout = timeout
        self._debounce = debounce
        self._clock = clock
        self._inflight: dict[str, asyncio.Future[Role]] = {}
        self._recent: dict[str, tuple[float, Role]] = {}
        self.queries = 0

    @property
    def cached(self) -> int:
        """Principals whose role is currently reused without a query."""
        return len(self._recent)

    async def resolve(self, principal_id: str, *, access_token: str | None = None) -> Role:
        self._evict_stale()
        hit = self._recent.get(principal_id)
        if hit:
            return hit[1]
        fut = self._inflight.get(principal_id)
        if fut is None:
            fut = asyncio.ensure_future(self._query(principal_id, access_token))
            fut.add_done_callback(_consume_exception)
            self._inflight[principal_id] = fut
        return await asyncio.shield(fut)

    def _evict_stale(self) -> None:
        now = self._clock()
        stale = [pid for pid, (at, _) in self._recent.items() if now - at >= self._debounce]
        for pid in stale:
            del self._recent[pid]

    def forget(self, principal_id: str) -> None:
        self._recent.pop(principal_id, None)

    async def _query(self, principal_id: str, access_token: str | None) -> Role:
        rows = self._rows_for(access_token)
        self.queries += 1
        try:
            role = Role.UNRESOLVED
            for table, candidate in (("admin", Role.ADMIN), ("students", Role.STUDENT)):
                found = await with_timeout(
                    lambda: rows.select_one(table, eq={"id": principal_id}),
                    self._timeout,
                    op=f"{table} role query",
                )
                if found:
                    role = candidate
                    break
            self._recent[principal_id] = (self._clock(), role)
            log.info("role_resolved", user_id=principal_id, role=role.value)
            return role
        finally:
            self._inflight.pop(principal_id, None)
