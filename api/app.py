"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.core.config import get_settings
from api.core.database import get_database_manager, init_database_manager
from api.core.dependencies import close_discord_api
from api.core.logging import setup_logging
from api.routers import discord_router, webhooks_router
from api.services.discord_errors import DiscordLinkError
from shared.migrations.runner import MigrationRunner

logger = logging.getLogger(__name__)

# Track server start time
_start_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    global _start_time
    _start_time = time.time()

    settings = get_settings()

    # Startup
    logger.info("Starting Discord link API server")
    logger.info(f"Environment: {settings.environment}")
    if not settings.discord_client_id or not settings.discord_client_secret:
        logger.warning("Discord OAuth credentials not set, linking is unavailable")
    if not settings.discord_bot_token:
        logger.warning("Discord bot token not set, channel listing and webhook creation disabled")

    # Wait up to 30s for the database before accepting requests
    db_manager = init_database_manager(settings.database_url)
    await asyncio.wait_for(db_manager.connect(), timeout=30)
    logger.info("Database connected")

    await MigrationRunner(db_manager.pool).run_pending()

    yield

    # Shutdown
    logger.info("Shutting down Discord link API server")
    try:
        await close_discord_api()
        await db_manager.disconnect()
        logger.info("Database disconnected")
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


async def discord_error_handler(request: Request, exc: DiscordLinkError) -> JSONResponse:
    """Translate Discord link errors into ``{"error", "code"}`` bodies"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.code}: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.code}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.user_message, "code": exc.code},
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    settings = get_settings()

    # Setup logging first
    setup_logging(settings)

    app = FastAPI(
        title="Discord Link API",
        description="Links application accounts to Discord and manages webhooks",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DiscordLinkError, discord_error_handler)

    # Register routers
    app.include_router(discord_router.router)
    app.include_router(webhooks_router.router)

    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": "discord-link-api", "status": "running"}

    # Liveness probe
    @app.get("/health")
    async def health():
        """Liveness check; reports DB state without failing on it"""
        try:
            db_ok = await get_database_manager().check_health()
        except RuntimeError:
            db_ok = False
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - _start_time) if _start_time else 0,
            "db_connected": db_ok,
        }

    logger.info("FastAPI application configured")

    return app
