from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from reward_tracker.backends.base import Backend
from reward_tracker.backends.factory import create_backend
from reward_tracker.config import Settings, settings as default_settings
from reward_tracker.errors import AppError
from reward_tracker.logging_setup import configure_logging
from reward_tracker.routes.system import router as system_router
from reward_tracker.routes.auth import router as auth_router
from reward_tracker.routes.shop import router as shop_router
from reward_tracker.routes.goals import router as goals_router
from reward_tracker.routes.dashboard import router as dashboard_router
from reward_tracker.routes.admin import router as admin_router
from reward_tracker.services.balance import SubmitGuard
from reward_tracker.services.base import CallPolicy
from reward_tracker.services.students import StudentDirectory
from reward_tracker.session.registry import SessionRegistry
from reward_tracker.session.resolver import RoleResolver
import structlog

configure_logging()
log = structlog.get_logger()

def attach_backend(app: FastAPI, backend: Backend, settings: Settings) -> None:
    resolver = RoleResolver(
        backend.rows,
        timeout=settings.role_query_timeout,
        debounce=settings.role_debounce_seconds,
    )
    app.state.backend = backend
    app.state.resolver = resolver
    app.state.registry = SessionRegistry(backend, resolver, settings)
    app.state.submit_guard = SubmitGuard()

async def bootstrap_admin(backend: Backend, settings: Settings) -> None:
    directory = StudentDirectory(backend, backend.rows(), CallPolicy.from_settings(settings))
    await directory.ensure_admin(
        settings.bootstrap_admin_email,
        settings.bootstrap_admin_password,
        settings.bootstrap_admin_name,
    )

def create_app(backend: Backend | None = None, settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        owned = app.state.backend is None
        if owned:
            # missing BACKEND_URL / BACKEND_API_KEY is fatal here
            attach_backend(app, create_backend(settings), settings)
        if settings.bootstrap_admin_email:
            await bootstrap_admin(app.state.backend, settings)
        log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha, backend=app.state.backend.kind)
        app.state.registry.start_sweeper(settings.session_check_interval)
        yield
        # Shutdown
        await app.state.registry.close_all()
        if owned:
            await app.state.backend.close()
        log.info("shutdown")

    app = FastAPI(
        title=f"{settings.app_display_name} API",
        version=settings.app_version,
        lifespan=lifespan,
        description=f"{settings.app_display_name} API for tutoring-center rewards",
    )
    app.state.settings = settings
    app.state.backend = None
    if backend is not None:
        attach_backend(app, backend, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(system_router)
    app.include_router(auth_router)
    app.include_router(shop_router)
    app.include_router(goals_router)
    app.include_router(dashboard_router)
    app.include_router(admin_router)

    @app.exception_handler(AppError)
    async def app_error(request: Request, exc: AppError):
        log.info("request_failed", path=request.url.path, code=exc.code, status=exc.status_code, retryable=exc.retryable)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        log.error("unhandled_error", path=request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Something went wrong. Please try again.", "code": "error", "retryable": False},
        )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid
        structlog.contextvars.bind_contextvars(request_id=rid)
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        structlog.contextvars.clear_contextvars()
        return response

    return app

app = create_app()
