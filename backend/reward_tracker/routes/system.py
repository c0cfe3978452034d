from __future__ import annotations
from fastapi import APIRouter, Request
from datetime import datetime, timezone

router = APIRouter()

@router.get("/health")
async def health(request: Request):
    settings = request.app.state.settings
    backend = request.app.state.backend
    return {
        "status": "ok",
        "env": settings.environment,
        "backend": backend.kind,
        "backend_ok": await backend.ping(),
        "sessions": len(request.app.state.registry),
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
    }

@router.get("/version")
async def version(request: Request):
    settings = request.app.state.settings
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "build": "docker",
    }
