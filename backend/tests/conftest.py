import uuid
import httpx
import pytest
from httpx import AsyncClient
from reward_tracker.backends.sql import SqlBackend
from reward_tracker.config import Settings
from reward_tracker.main import create_app
from reward_tracker.schemas.student import StudentCreate
from reward_tracker.services.balance import BalanceLedger
from reward_tracker.services.base import CallPolicy
from reward_tracker.services.students import StudentDirectory

SIGNING_KEY = "test-signing-key"
PASSWORD = "supersecret"

async def _no_sleep(_seconds):
    return None

def unique_email(name: str) -> str:
    return f"{name.lower()}-{uuid.uuid4().hex[:8]}@example.com"

@pytest.fixture
async def backend(tmp_path):
    # file-backed so concurrent sessions get their own connections
    b = SqlBackend(f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}", SIGNING_KEY)
    await b.create_schema()
    yield b
    await b.close()

@pytest.fixture
def policy():
    return CallPolicy(fetch_timeout=5, mutation_timeout=5, max_retries=2, retry_delay=0, sleep=_no_sleep)

@pytest.fixture
def rows(backend):
    return backend.rows()

@pytest.fixture
def directory(backend, policy):
    return StudentDirectory(backend, backend.rows(), policy)

@pytest.fixture
def make_student(backend, directory, policy):
    async def make(name: str = "Ada", balance: int = 0, email: str | None = None):
        student = await directory.provision_student(
            StudentCreate(email=email or unique_email(name), password=PASSWORD, name=name, level="5")
        )
        if balance:
            change = await BalanceLedger(backend.rows(), policy).credit(student.id, balance, "Starting balance")
            student = student.model_copy(update={"balance": change.balance})
        return student
    return make

@pytest.fixture
def make_admin(directory):
    async def make(name: str = "Grace", email: str | None = None):
        return await directory.provision_admin(email or unique_email(name), PASSWORD, name)
    return make

@pytest.fixture
def settings():
    return Settings(
        environment="dev",
        backend_url="sqlite+aiosqlite://",
        backend_api_key=SIGNING_KEY,
        retry_delay=0,
        session_timeout=5,
    )

@pytest.fixture
def app(backend, settings):
    return create_app(backend=backend, settings=settings)

@pytest.fixture
async def client(app):
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await app.state.registry.close_all()
