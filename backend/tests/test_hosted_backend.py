import json
import httpx
import pytest
from reward_tracker.backends.hosted import HostedBackend
from reward_tracker.errors import (
    AuthError,
    ConflictError,
    InsufficientBalanceError,
    NetworkError,
    ValidationError,
)
from reward_tracker.session.resolver import Role, RoleResolver
from reward_tracker.session.store import SessionState, SessionStore

API_KEY = "anon-key"
USER = {"id": "5b7e3c1a-0000-4000-8000-000000000001", "email": "ada@example.com", "user_metadata": {"name": "Ada"}}

class FakeService:
    """Just enough of the hosted auth + rest API for the client under test."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.students = {USER["id"]}
        self.fail_with: httpx.Response | Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.fail_with, Exception):
            raise self.fail_with
        if self.fail_with is not None:
            return self.fail_with
        path = request.url.path
        if path == "/auth/v1/token":
            body = json.loads(request.content)
            if request.url.params["grant_type"] == "password" and body["password"] != "supersecret":
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})
            return httpx.Response(200, json={
                "access_token": "user-token",
                "refresh_token": "refresh-token",
                "expires_in": 3600,
                "user": USER,
            })
        if path == "/auth/v1/logout":
            return httpx.Response(204)
        if path in ("/rest/v1/admin", "/rest/v1/students"):
            wanted = request.url.params.get("id", "").removeprefix("eq.")
            table = path.rsplit("/", 1)[-1]
            found = table == "students" and wanted in self.students
            return httpx.Response(200, json=[{"id": wanted}] if found else [])
        if path == "/rest/v1/rpc/debit_balance":
            return httpx.Response(400, json={"code": "RT001", "message": "insufficient balance"})
        if path == "/rest/v1/goals" and request.method == "POST":
            return httpx.Response(409, json={"code": "23505", "message": "duplicate key value"})
        return httpx.Response(200, json=[])

@pytest.fixture
async def hosted():
    service = FakeService()
    backend = HostedBackend("https://project.example.com", API_KEY, transport=httpx.MockTransport(service))
    yield backend, service
    await backend.close()

@pytest.mark.asyncio
async def test_sign_in_and_role_resolution(hosted):
    backend, service = hosted
    store = SessionStore(backend.auth_client(), RoleResolver(backend.rows))
    snap = await store.sign_in("ada@example.com", "supersecret")
    assert snap.state is SessionState.AUTHENTICATED
    assert snap.role is Role.STUDENT
    assert snap.principal.display_name == "Ada"
    role_queries = [r for r in service.requests if r.url.path.startswith("/rest/v1/")]
    assert [r.url.path for r in role_queries] == ["/rest/v1/admin", "/rest/v1/students"]
    assert all(r.headers["authorization"] == "Bearer user-token" for r in role_queries)
    assert all(r.headers["apikey"] == API_KEY for r in service.requests)
    await store.sign_out()
    assert service.requests[-1].url.path == "/auth/v1/logout"
    await store.close()

@pytest.mark.asyncio
async def test_bad_password_is_auth_error(hosted):
    backend, _ = hosted
    with pytest.raises(AuthError) as info:
        await backend.auth_client().sign_in_with_password("ada@example.com", "nope")
    assert info.value.message == "Invalid login credentials"

@pytest.mark.asyncio
async def test_select_filters_are_encoded(hosted):
    backend, service = hosted
    await backend.rows("user-token").select(
        "rewards", eq={"available": True}, in_={"category": ["toys", "books"]}, order_by="cost", limit=5
    )
    params = service.requests[-1].url.params
    assert params["available"] == "eq.true"
    assert params["category"] == "in.(toys,books)"
    assert params["order"] == "cost.asc"
    assert params["limit"] == "5"

@pytest.mark.asyncio
async def test_anonymous_rows_use_api_key(hosted):
    backend, service = hosted
    await backend.rows().select("rewards")
    assert service.requests[-1].headers["authorization"] == f"Bearer {API_KEY}"

@pytest.mark.asyncio
async def test_unknown_relation_rejected_locally(hosted):
    backend, service = hosted
    with pytest.raises(ValidationError):
        await backend.rows().select("pg_user")
    assert service.requests == []

@pytest.mark.asyncio
async def test_error_mapping(hosted):
    backend, service = hosted
    rows = backend.rows("user-token")
    with pytest.raises(InsufficientBalanceError):
        await rows.debit_balance(USER["id"], 500, "Correction")
    with pytest.raises(ConflictError):
        await rows.insert("goals", {"student_id": USER["id"], "target_cost": 10})

    service.fail_with = httpx.Response(503, json={"message": "upstream unavailable"})
    with pytest.raises(NetworkError) as info:
        await rows.select("students")
    assert info.value.retryable is True

    service.fail_with = httpx.Response(401, json={"message": "JWT expired"})
    with pytest.raises(AuthError):
        await rows.select("students")

@pytest.mark.asyncio
async def test_transport_failures(hosted):
    backend, service = hosted
    service.fail_with = httpx.ReadTimeout("slow")
    with pytest.raises(NetworkError) as info:
        await backend.rows().select("rewards")
    assert info.value.timeout is True
    assert info.value.retryable is False

    service.fail_with = httpx.ConnectError("refused")
    with pytest.raises(NetworkError) as info:
        await backend.rows().select("rewards")
    assert info.value.retryable is True

@pytest.mark.asyncio
async def test_delete_principal_uses_admin_endpoint(hosted):
    backend, service = hosted
    await backend.delete_principal(USER["id"])
    req = service.requests[-1]
    assert (req.method, req.url.path) == ("DELETE", f"/auth/v1/admin/users/{USER['id']}")
    service.fail_with = httpx.Response(404, json={"msg": "User not found"})
    await backend.delete_principal(USER["id"])
