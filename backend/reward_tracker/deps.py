from __future__ import annotations
from fastapi import Request
from reward_tracker.backends.base import Backend, RowStore
from reward_tracker.services.balance import SubmitGuard
from reward_tracker.services.base import CallPolicy
from reward_tracker.session.store import SessionStore

def get_backend(request: Request) -> Backend:
    return request.app.state.backend

def get_policy(request: Request) -> CallPolicy:
    return CallPolicy.from_settings(request.app.state.settings)

def get_submit_guard(request: Request) -> SubmitGuard:
    return request.app.state.submit_guard

def rows_for(request: Request, store: SessionStore | None = None) -> RowStore:
    """Row store acting as the signed-in user, or anonymously for public views."""
    return get_backend(request).rows(store.access_token if store is not None else None)
