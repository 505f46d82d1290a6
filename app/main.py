import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.cache.layer import CacheLayer
from app.core.config import Settings, get_settings
from app.core.errors import register_error_handlers
from app.core.logging import setup_logging
from app.database import create_db_and_tables, dispose_engine
from app.limiter.admission import AdmissionLimiter
from app.routers import account, tasks, user
from app.security.tokens import TokenService
from app.stores.memory import MemoryTaskStore, MemoryUserStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    # refuse to start without a signing key rather than sign with an empty one
    app.state.token_service.ensure_configured()
    if settings.storage_backend == "sql":
        await create_db_and_tables(settings.database_url, settings.database_echo)
    await app.state.cache.init_cache()
    logger.info("%s started (storage=%s)", settings.app_name, settings.storage_backend)
    yield
    await app.state.cache.close()
    if settings.storage_backend == "sql":
        await dispose_engine(settings.database_url, settings.database_echo)


def create_app(
    settings: Settings | None = None,
    *,
    cache: CacheLayer | None = None,
    limiter: AdmissionLimiter | None = None,
    token_service: TokenService | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Per-user task tracking with JWT login, cached listings and rate limiting",
        swagger_ui_parameters={"displayRequestDuration": True},
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.cache = cache or CacheLayer.from_settings(settings)
    app.state.limiter = limiter or AdmissionLimiter.from_settings(settings)
    app.state.token_service = token_service or TokenService.from_settings(settings)
    if settings.storage_backend == "memory":
        app.state.task_store = MemoryTaskStore()
        app.state.user_store = MemoryUserStore()

    register_error_handlers(app)

    # Include routers
    app.include_router(account.router)
    app.include_router(user.router)
    app.include_router(tasks.router)

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Task Tracker API",
            "docs": "/docs",
            "version": "1.0.0",
        }

    @app.get("/health")
    async def health_check(request: Request):
        state = request.app.state
        return {
            "status": "healthy",
            "cache": state.cache.get_stats(),
            "rate_limited_identities": state.limiter.tracked_identities(),
        }

    return app


app = create_app()
