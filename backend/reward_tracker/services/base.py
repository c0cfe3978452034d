from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
from reward_tracker.backends.base import RowStore
from reward_tracker.services.retry import with_retry, with_timeout

T = TypeVar("T")


@dataclass(frozen=True)
class CallPolicy:
    """Timeouts and retry budget for backend calls made by the services."""

    fetch_timeout: float = 15.0
    mutation_timeout: float = 20.0
    max_retries: int = 2
    retry_delay: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings) -> "CallPolicy":
        return cls(
            fetch_timeout=settings.fetch_timeout,
            mutation_timeout=settings.mutation_timeout,
            max_retries=settings.retry_max,
            retry_delay=settings.retry_delay,
        )


class Service:
    def __init__(self, rows: RowStore, policy: CallPolicy | None = None):
        self.rows = rows
        self.policy = policy or CallPolicy()

    async def _read(self, fn: Callable[[], Awaitable[T]], op: str) -> T:
        p = self.policy
        return await with_retry(fn, max_retries=p.max_retries, delay=p.retry_delay, timeout=p.fetch_timeout, op=op, sleep=p.sleep)

    async def _write(self, fn: Callable[[], Awaitable[T]], op: str) -> T:
        # mutations run once; a retry could apply them twice
        return await with_timeout(fn, self.policy.mutation_timeout, op=op)
