from __future__ import annotations
from fastapi import APIRouter, Depends, Request, Response
from reward_tracker.auth_deps import get_registry, get_session_id, get_store
from reward_tracker.errors import AuthError
from reward_tracker.schemas.auth import LoginRequest, LoginResponse, PrincipalPublic, ProfileUpdate, SessionPublic
from reward_tracker.session.registry import SessionRegistry
from reward_tracker.session.store import SessionSnapshot, SessionState, SessionStore
import structlog

router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger()

def _public(snap: SessionSnapshot) -> dict:
    user = snap.principal
    return {
        "state": snap.state.value,
        "role": snap.role.value if snap.role else None,
        "user": PrincipalPublic(id=user.id, email=user.email, display_name=user.display_name) if user else None,
        "expires_at": snap.expires_at,
        "error": snap.error,
        "expiry_warning": snap.expiry_warning,
    }

@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, request: Request, response: Response, registry: SessionRegistry = Depends(get_registry)):
    settings = request.app.state.settings
    session_id, store = await registry.open()
    try:
        await store.sign_in(payload.email, payload.password)
    except Exception:
        await registry.close(session_id)
        raise
    snap = await store.wait_settled()
    log.info("login", user_id=snap.principal.id if snap.principal else None, state=snap.state.value)
    response.set_cookie(
        settings.session_cookie,
        session_id,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "prod",
        max_age=settings.refresh_ttl_min * 60,
    )
    return LoginResponse(session_id=session_id, **_public(snap))

@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    session_id: str | None = Depends(get_session_id),
    store: SessionStore | None = Depends(get_store),
    registry: SessionRegistry = Depends(get_registry),
):
    if store is not None:
        # local state is cleared even if the backend call fails
        await store.sign_out()
        await registry.close(session_id)
    resp = Response(status_code=204)
    resp.delete_cookie(request.app.state.settings.session_cookie)
    return resp

@router.post("/refresh", response_model=SessionPublic)
async def refresh(store: SessionStore | None = Depends(get_store)):
    if store is None:
        raise AuthError("Sign in required")
    snap = await store.refresh()
    return SessionPublic(**_public(snap))

@router.get("/session", response_model=SessionPublic)
async def session(store: SessionStore | None = Depends(get_store)):
    if store is None:
        return SessionPublic(state=SessionState.ANONYMOUS.value)
    snap = await store.wait_settled()
    return SessionPublic(**_public(snap))

@router.patch("/profile", response_model=SessionPublic)
async def update_profile(payload: ProfileUpdate, store: SessionStore | None = Depends(get_store)):
    if store is None:
        raise AuthError("Sign in required")
    await store.update_profile(payload.display_name.strip())
    snap = await store.wait_settled()
    return SessionPublic(**_public(snap))
