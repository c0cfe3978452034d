from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, TypeVar
import structlog
from reward_tracker.errors import AppError, NetworkError

log = structlog.get_logger()

T = TypeVar("T")


async def with_timeout(fn: Callable[[], Awaitable[T]], timeout: float, *, op: str = "backend call") -> T:
    """Await fn() for at most `timeout` seconds; a hang becomes a non-retryable NetworkError."""
    try:
        return await asyncio.wait_for(fn(), timeout)
    except asyncio.TimeoutError:
        raise NetworkError(f"{op} timed out after {timeout:g}s", timeout=True)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 2,
    delay: float = 2.0,
    backoff: bool = True,
    timeout: float = 15.0,
    op: str = "backend call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run a read against the backend with bounded retries.

    Only errors constructed as retryable are retried; timeouts, auth,
    validation and conflict errors surface on the first failure. Waits are
    delay, 2*delay, 4*delay... when backoff is on.
    """
    attempt = 0
    while True:
        try:
            return await with_timeout(fn, timeout, op=op)
        except AppError as e:
            log.warning(
                "attempt_failed",
                op=op,
                attempt=attempt + 1,
                attempts=max_retries + 1,
                error=e.message,
                retryable=e.retryable,
            )
            if not e.retryable or attempt >= max_retries:
                raise
        wait = delay * (2 ** attempt) if backoff else delay
        attempt += 1
        await sleep(wait)
