"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from readboost.api import routes, session_routes
from readboost.core.clock import Clock, utc_now
from readboost.core.config import Settings, get_settings
from readboost.core.errors import InvalidArgument, SessionClosed, UserNotFound
from readboost.core.logging import get_logger, setup_logging
from readboost.services.reconciliation import ProgressReconciler
from readboost.services.sessions import SessionTracker
from readboost.stores.local import LocalStore, SqlLocalStore
from readboost.stores.remote import RemoteStore, build_remote_store

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    settings: Settings = app.state.settings
    local = app.state.local
    if isinstance(local, SqlLocalStore):
        local.init()
    logger.info(f"Starting {settings.app_name} on port {settings.port} (remote: {settings.remote_backend.value})")
    yield
    await app.state.remote.close()
    if isinstance(local, SqlLocalStore):
        local.dispose()
    logger.info(f"Shutting down {settings.app_name}")


def register_error_handlers(app: FastAPI) -> None:
    """Map domain errors to HTTP responses."""

    @app.exception_handler(SessionClosed)
    async def session_closed_handler(request: Request, exc: SessionClosed):
        return JSONResponse(status_code=409, content={"error": "session_closed", "message": str(exc)})

    @app.exception_handler(InvalidArgument)
    async def invalid_argument_handler(request: Request, exc: InvalidArgument):
        return JSONResponse(status_code=422, content={"error": "invalid_argument", "message": str(exc)})

    @app.exception_handler(UserNotFound)
    async def user_not_found_handler(request: Request, exc: UserNotFound):
        return JSONResponse(status_code=404, content={"error": "user_not_found", "message": str(exc)})


def create_app(
    settings: Settings | None = None,
    remote: RemoteStore | None = None,
    local: LocalStore | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    @param settings - Defaults to get_settings()
    @param remote - Remote store; built from settings when omitted
    @param local - Local store; SQLAlchemy store on settings.local_database_url when omitted
    @param clock - Wall clock for progress and session timestamps
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.json_logs)

    remote = remote or build_remote_store(settings)
    local = local or SqlLocalStore(settings.local_database_url)
    sessions = SessionTracker(remote, settings, clock=clock)

    app = FastAPI(
        title=settings.app_name,
        description="Reading progress, streaks and XP leaderboard",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.remote = remote
    app.state.local = local
    app.state.sessions = sessions
    app.state.reconciler = ProgressReconciler(remote, local, settings, sessions=sessions, clock=clock)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(routes.router, prefix="/api")
    app.include_router(session_routes.router, prefix="/api")

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "readboost.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )
