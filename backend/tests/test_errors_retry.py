import asyncio
import pytest
from reward_tracker.errors import (
    AuthError,
    ConflictError,
    InsufficientBalanceError,
    NetworkError,
    StateError,
    ValidationError,
)
from reward_tracker.services.retry import with_retry, with_timeout

class Recorder:
    def __init__(self):
        self.waits = []

    async def __call__(self, seconds):
        self.waits.append(seconds)

def test_retryable_flags():
    assert NetworkError("down").retryable is True
    assert NetworkError("slow", timeout=True).retryable is False
    for exc in (AuthError("x"), ValidationError("x"), ConflictError("x"), StateError("x"), InsufficientBalanceError("x")):
        assert exc.retryable is False

def test_error_payload_shape():
    body = InsufficientBalanceError("Amount exceeds the current balance").to_dict()
    assert body == {"detail": "Amount exceeds the current balance", "code": "insufficient_balance", "retryable": False}
    assert isinstance(InsufficientBalanceError("x"), ValidationError)

@pytest.mark.asyncio
async def test_retry_gives_up_after_budget_with_backoff():
    calls = 0
    sleep = Recorder()

    async def flaky():
        nonlocal calls
        calls += 1
        raise NetworkError("connection reset")

    with pytest.raises(NetworkError):
        await with_retry(flaky, max_retries=2, delay=2.0, op="students", sleep=sleep)
    assert calls == 3
    assert sleep.waits == [2.0, 4.0]

@pytest.mark.asyncio
async def test_retry_recovers_after_transient_failure():
    calls = 0

    async def once_then_ok():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise NetworkError("blip")
        return "rows"

    assert await with_retry(once_then_ok, delay=0.5, backoff=False, sleep=Recorder()) == "rows"
    assert calls == 2

@pytest.mark.asyncio
async def test_non_retryable_errors_surface_immediately():
    calls = 0
    sleep = Recorder()

    async def denied():
        nonlocal calls
        calls += 1
        raise AuthError("Invalid token")

    with pytest.raises(AuthError):
        await with_retry(denied, sleep=sleep)
    assert calls == 1
    assert sleep.waits == []

@pytest.mark.asyncio
async def test_timeout_is_reported_once_not_retried():
    calls = 0

    async def hangs():
        nonlocal calls
        calls += 1
        await asyncio.sleep(10)

    with pytest.raises(NetworkError) as info:
        await with_retry(hangs, timeout=0.01, sleep=Recorder())
    assert info.value.timeout is True
    assert calls == 1

@pytest.mark.asyncio
async def test_with_timeout_passes_result_through():
    async def quick():
        return 42

    assert await with_timeout(quick, 1.0) == 42
