import asyncio
import pytest
from conftest import PASSWORD, SIGNING_KEY
from reward_tracker.config import Settings
from reward_tracker.main import create_app

async def login(client, email, password=PASSWORD):
    r = await client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    body = r.json()
    return body, {"Authorization": f"Bearer {body['session_id']}"}

@pytest.fixture
async def people(make_student, make_admin):
    ada = await make_student(name="Ada", balance=80)
    grace = await make_admin(name="Grace")
    return ada, grace

@pytest.mark.asyncio
async def test_anonymous_is_sent_to_login(client):
    r = await client.get("/dashboard")
    assert r.status_code == 401
    assert r.headers["location"] == "/auth/login"
    r = await client.get("/auth/session")
    assert r.json()["state"] == "anonymous"

@pytest.mark.asyncio
async def test_login_sets_cookie_and_role(client, people):
    ada, _ = people
    r = await client.post("/auth/login", json={"email": ada.email, "password": PASSWORD})
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "authenticated"
    assert body["role"] == "student"
    assert body["user"]["id"] == str(ada.id)
    assert f"rt_session={body['session_id']}" in r.headers["set-cookie"]
    assert "httponly" in r.headers["set-cookie"].lower()

@pytest.mark.asyncio
async def test_bad_credentials(client, app, people):
    ada, _ = people
    r = await client.post("/auth/login", json={"email": ada.email, "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json() == {"detail": "Invalid credentials", "code": "auth", "retryable": False}
    assert len(app.state.registry) == 0

@pytest.mark.asyncio
async def test_principal_without_profile_cannot_enter(client, backend):
    await backend.provision_principal("ghost@example.com", PASSWORD, "Ghost")
    body, headers = await login(client, "ghost@example.com")
    assert body["state"] == "unresolved"
    assert body["error"] == "This account has no student or instructor profile."
    r = await client.get("/dashboard", headers=headers)
    assert r.status_code == 401
    assert r.headers["location"] == "/auth/login"

@pytest.mark.asyncio
async def test_wrong_role_is_forbidden(client, people):
    ada, grace = people
    _, student = await login(client, ada.email)
    _, admin = await login(client, grace.email)
    assert (await client.get("/admin/overview", headers=student)).status_code == 403
    assert (await client.get("/dashboard", headers=admin)).status_code == 403

@pytest.mark.asyncio
async def test_goal_round_trip(client, people):
    ada, grace = people
    _, admin = await login(client, grace.email)
    _, student = await login(client, ada.email)

    r = await client.post("/admin/rewards", headers=admin, json={"name": "Lego set", "cost": 100, "category": "toys"})
    assert r.status_code == 201
    reward = r.json()

    r = await client.get("/shop/rewards", params={"category": "toys", "price_range": "51-100"})
    assert [x["name"] for x in r.json()] == ["Lego set"]

    r = await client.post("/goals", headers=student, json={"reward_id": reward["id"]})
    assert r.status_code == 201
    goal = r.json()
    assert goal["status"] == "pending"

    r = await client.post("/goals", headers=student, json={"custom": {"name": "Bike", "target_cost": 300}})
    assert r.status_code == 409
    assert r.json()["code"] == "conflict"

    r = await client.get("/admin/goals/pending", headers=admin)
    assert [p["goal"]["id"] for p in r.json()] == [goal["id"]]

    r = await client.post(f"/admin/goals/{goal['id']}/approve", headers=admin)
    assert r.json()["status"] == "approved"
    r = await client.post(f"/admin/goals/{goal['id']}/reject", headers=admin)
    assert r.status_code == 409
    assert r.json()["code"] == "state"

    r = await client.get("/goals/current", headers=student)
    assert r.json()["percent"] == 80

    r = await client.post(f"/admin/students/{ada.id}/credit", headers=admin, json={"amount": 20, "description": "Test score"})
    assert r.status_code == 200
    assert r.json()["balance"] == 100

    r = await client.get("/dashboard", headers=student)
    dash = r.json()
    assert dash["errors"] == {}
    assert dash["goal"]["reached"] is True
    assert dash["student"]["balance"] == 100

@pytest.mark.asyncio
async def test_balance_adjustments(client, people):
    ada, grace = people
    _, admin = await login(client, grace.email)

    r = await client.post(f"/admin/students/{ada.id}/debit", headers=admin, json={"amount": 500, "description": "Oops"})
    assert r.status_code == 402
    assert r.json()["code"] == "insufficient_balance"

    r = await client.post(f"/admin/students/{ada.id}/credit", headers=admin, json={"amount": 0, "description": "Nothing"})
    assert r.status_code == 422
    assert r.json()["code"] == "validation"

    r = await client.post(f"/admin/students/{ada.id}/debit", headers=admin, json={"amount": 30, "description": "Correction"})
    assert r.json()["balance"] == 50

    r = await client.get(f"/admin/students/{ada.id}/transactions", headers=admin)
    assert [t["type"] for t in r.json()] == ["removed", "earned"]

    r = await client.get(f"/admin/students/{ada.id}/reconcile", headers=admin)
    assert r.json()["ledger_balance"] == 50
    assert r.json()["consistent"] is True

@pytest.mark.asyncio
async def test_admin_manages_students_and_rewards(client, people):
    _, grace = people
    _, admin = await login(client, grace.email)

    r = await client.post("/admin/students", headers=admin, json={
        "email": "lin@example.com", "password": PASSWORD, "name": "Lin", "level": "3",
    })
    assert r.status_code == 201
    lin = r.json()
    assert lin["balance"] == 0

    body, _ = await login(client, "lin@example.com")
    assert body["role"] == "student"

    r = await client.get("/admin/students", headers=admin)
    assert [s["name"] for s in r.json()] == ["Ada", "Lin"]

    r = await client.post("/admin/rewards", headers=admin, json={"name": "Kite", "cost": 12, "category": "toys"})
    kite = r.json()
    r = await client.patch(f"/admin/rewards/{kite['id']}", headers=admin, json={"available": False})
    assert r.json()["available"] is False
    assert (await client.get("/shop/rewards")).json() == []
    assert (await client.delete(f"/admin/rewards/{kite['id']}", headers=admin)).status_code == 204

    assert (await client.delete(f"/admin/students/{lin['id']}", headers=admin)).status_code == 204
    assert (await client.delete(f"/admin/students/{lin['id']}", headers=admin)).status_code == 404

@pytest.mark.asyncio
async def test_logout_ends_session(client, people):
    ada, _ = people
    body, headers = await login(client, ada.email)
    r = await client.post("/auth/logout", headers=headers)
    assert r.status_code == 204
    r = await client.get("/dashboard", headers=headers)
    assert r.status_code == 401
    r = await client.get("/auth/session", headers=headers)
    assert r.json()["state"] == "anonymous"

@pytest.mark.asyncio
async def test_refresh_keeps_role(client, people):
    ada, _ = people
    _, headers = await login(client, ada.email)
    r = await client.post("/auth/refresh", headers=headers)
    assert r.status_code == 200
    assert r.json()["role"] == "student"

@pytest.mark.asyncio
async def test_profile_update_renames_principal(client, people):
    ada, _ = people
    _, headers = await login(client, ada.email)
    r = await client.patch("/auth/profile", json={"display_name": "Ada L."}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["user"]["display_name"] == "Ada L."
    assert body["role"] == "student"
    r = await client.patch("/auth/profile", json={"display_name": "x"})
    assert r.status_code == 401

@pytest.mark.asyncio
async def test_non_integer_amounts_are_refused(client, people):
    ada, grace = people
    _, admin = await login(client, grace.email)
    url = f"/admin/students/{ada.id}/credit"
    for amount in (True, 2.0, "5"):
        r = await client.post(url, headers=admin, json={"amount": amount, "description": "Bonus"})
        assert r.status_code == 422, amount
    r = await client.get(f"/admin/students/{ada.id}/transactions", headers=admin)
    assert [t["description"] for t in r.json()] == ["Starting balance"]

@pytest.mark.asyncio
async def test_overlapping_identical_credit_is_applied_once(client, backend, people, monkeypatch):
    ada, grace = people
    _, admin = await login(client, grace.email)
    rows = backend.rows()
    real_credit = rows.credit_balance
    entered, release = asyncio.Event(), asyncio.Event()

    async def held_credit(*args, **kwargs):
        entered.set()
        await release.wait()
        return await real_credit(*args, **kwargs)

    monkeypatch.setattr(rows, "credit_balance", held_credit)
    url = f"/admin/students/{ada.id}/credit"
    payload = {"amount": 10, "description": "Homework"}
    first = asyncio.create_task(client.post(url, headers=admin, json=payload))
    await asyncio.wait_for(entered.wait(), timeout=5)

    second = await client.post(url, headers=admin, json=payload)
    assert second.status_code == 409
    assert second.json()["code"] == "conflict"

    release.set()
    r = await first
    assert r.status_code == 200
    assert r.json()["balance"] == 90
    r = await client.get(f"/admin/students/{ada.id}/transactions", headers=admin)
    assert [t["description"] for t in r.json()].count("Homework") == 1

@pytest.mark.asyncio
async def test_redeem_spends_goal_cost_and_completes_it(client, people):
    ada, grace = people
    _, admin = await login(client, grace.email)
    _, student = await login(client, ada.email)

    r = await client.post("/goals", headers=student, json={"custom": {"name": "Art kit", "target_cost": 50}})
    goal = r.json()
    r = await client.post(f"/admin/goals/{goal['id']}/redeem", headers=admin)
    assert r.status_code == 409
    assert r.json()["code"] == "state"

    await client.post(f"/admin/goals/{goal['id']}/approve", headers=admin)
    r = await client.post(f"/admin/goals/{goal['id']}/redeem", headers=admin)
    assert r.status_code == 200
    body = r.json()
    assert body["goal"]["status"] == "completed"
    assert body["balance"] == 30
    assert body["transaction"]["type"] == "spent"
    assert body["transaction"]["description"] == "Redeemed: Art kit"

    r = await client.post(f"/admin/goals/{goal['id']}/redeem", headers=admin)
    assert r.status_code == 409
    r = await client.get(f"/admin/students/{ada.id}/reconcile", headers=admin)
    assert r.json()["stored_balance"] == 30
    assert r.json()["consistent"] is True

@pytest.mark.asyncio
async def test_redeem_above_balance_keeps_goal_approved(client, people):
    ada, grace = people
    _, admin = await login(client, grace.email)
    _, student = await login(client, ada.email)
    r = await client.post("/goals", headers=student, json={"custom": {"name": "Bike", "target_cost": 300}})
    goal = r.json()
    await client.post(f"/admin/goals/{goal['id']}/approve", headers=admin)
    r = await client.post(f"/admin/goals/{goal['id']}/redeem", headers=admin)
    assert r.status_code == 402
    r = await client.get("/goals/current", headers=student)
    assert r.json()["goal"]["status"] == "approved"

@pytest.mark.asyncio
async def test_startup_creates_first_admin_once(backend):
    settings = Settings(
        environment="dev",
        backend_url="sqlite+aiosqlite://",
        backend_api_key=SIGNING_KEY,
        bootstrap_admin_email="Owner@Example.com",
        bootstrap_admin_password=PASSWORD,
        bootstrap_admin_name="Owner",
    )
    for _ in range(2):
        app = create_app(backend=backend, settings=settings)
        async with app.router.lifespan_context(app):
            pass
    admins = await backend.rows().select("admin")
    assert [(a["email"], a["name"]) for a in admins] == [("owner@example.com", "Owner")]
