import asyncio
import pytest
from reward_tracker.session.registry import SessionRegistry
from reward_tracker.session.resolver import RoleResolver
from reward_tracker.session.store import SessionState
from conftest import PASSWORD
from fakes import Clock

@pytest.fixture
def clock():
    return Clock()

@pytest.fixture
async def registry(backend, settings, clock):
    reg = SessionRegistry(backend, RoleResolver(backend.rows), settings, clock=clock)
    yield reg
    await reg.close_all()

@pytest.mark.asyncio
async def test_sign_in_without_profile_does_not_accumulate(registry, backend):
    await backend.provision_principal("ghost@example.com", PASSWORD, "Ghost")
    for _ in range(4):
        session_id, store = await registry.open()
        snap = await store.sign_in("ghost@example.com", PASSWORD)
        assert snap.state is SessionState.UNRESOLVED
    assert len(registry) == 1
    assert await registry.prune() == 1
    assert registry.get(session_id) is None

@pytest.mark.asyncio
async def test_signed_out_store_is_pruned(registry, make_student):
    ada = await make_student()
    session_id, store = await registry.open()
    await store.sign_in(ada.email, PASSWORD)
    await store.sign_out()
    assert await registry.prune() == 1
    assert len(registry) == 0

@pytest.mark.asyncio
async def test_idle_sessions_are_closed(registry, clock, settings, make_student):
    ada = await make_student()
    opened = []
    for _ in range(3):
        session_id, store = await registry.open()
        await store.sign_in(ada.email, PASSWORD)
        opened.append((session_id, store))
    assert all(store.monitor.running for _, store in opened)

    clock.now += settings.session_idle_minutes * 60 - 1
    active_id, active = opened[0]
    assert registry.get(active_id) is active
    clock.now += 2
    assert await registry.prune() == 2
    assert len(registry) == 1
    assert registry.get(active_id) is active
    assert active.monitor.running
    assert not any(store.monitor.running for _, store in opened[1:])

@pytest.mark.asyncio
async def test_sweeper_prunes_without_new_logins(registry, make_student):
    ada = await make_student()
    _, store = await registry.open()
    await store.sign_in(ada.email, PASSWORD)
    await store.sign_out()
    registry.start_sweeper(0.01)
    for _ in range(200):
        if len(registry) == 0:
            break
        await asyncio.sleep(0.01)
    assert len(registry) == 0
