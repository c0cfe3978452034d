from __future__ import annotations
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from reward_tracker.session.registry import SessionRegistry
from reward_tracker.session.resolver import Role
from reward_tracker.session.store import SessionState, SessionStore

LOGIN_PATH = "/auth/login"

security = HTTPBearer(auto_error=False)

def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry

def get_session_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    # bearer session id for API clients, cookie for browsers
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(request.app.state.settings.session_cookie)

def get_store(
    session_id: str | None = Depends(get_session_id),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStore | None:
    return registry.get(session_id)

def _to_login(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"Location": LOGIN_PATH})

def require_role(role: Role):
    """Guard for a protected view: settled, authenticated and holding `role`."""

    async def guard(store: SessionStore | None = Depends(get_store)) -> SessionStore:
        if store is None:
            raise _to_login("Sign in required")
        snap = await store.wait_settled()
        if snap.state is not SessionState.AUTHENTICATED:
            raise _to_login(snap.error or "Sign in required")
        if snap.role is not role:
            raise HTTPException(status_code=403, detail=f"{role.value} access required")
        return store

    return guard

require_student = require_role(Role.STUDENT)
require_admin = require_role(Role.ADMIN)
