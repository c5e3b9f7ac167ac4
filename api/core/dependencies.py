"""Dependency injection utilities for FastAPI"""

import asyncio
import logging
from datetime import timedelta

import asyncpg
from fastapi import Cookie, Depends, HTTPException

from api.core.config import get_settings
from api.core.database import get_database_manager
from api.services import (
    AuthService,
    DiscordAPIClient,
    DiscordLinkService,
    DiscordRequestExecutor,
    DiscordResourceCache,
    DiscordTokenManager,
    OAuthStateStore,
    RateLimitBucketStore,
    WebhookProvisioner,
)
from shared.repositories import (
    DiscordCacheRepository,
    DiscordConnectionRepository,
    WebhookRepository,
)

logger = logging.getLogger(__name__)


# ============================================
# Process-wide singletons
# ============================================

_bucket_store = RateLimitBucketStore()
_oauth_states = OAuthStateStore()
_cache_scope_locks: dict[tuple[str, ...], asyncio.Lock] = {}
_discord_api: DiscordAPIClient | None = None


def get_oauth_state_store() -> OAuthStateStore:
    return _oauth_states


def get_discord_api() -> DiscordAPIClient:
    """Get shared DiscordAPIClient singleton (connection reuse + shared buckets)."""
    global _discord_api
    if _discord_api is None:
        settings = get_settings()
        executor = DiscordRequestExecutor(
            _bucket_store,
            base_url=settings.discord_api_base,
            timeout=settings.discord_request_timeout,
            default_retry_after=settings.discord_default_retry_after,
        )
        _discord_api = DiscordAPIClient(
            executor,
            client_id=settings.discord_client_id,
            client_secret=settings.discord_client_secret,
            redirect_uri=settings.discord_redirect_uri,
            bot_token=settings.discord_bot_token,
        )
    return _discord_api


async def close_discord_api() -> None:
    """Close the shared DiscordAPIClient. Call on app shutdown."""
    global _discord_api
    if _discord_api is not None:
        await _discord_api.close()
        _discord_api = None


def get_auth_service() -> AuthService:
    """Get AuthService instance (dependency injection)"""
    settings = get_settings()
    return AuthService(secret_key=settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


# ============================================
# Repositories
# ============================================


def get_db_pool() -> asyncpg.Pool:
    db_manager = get_database_manager()
    if not db_manager.is_connected:
        raise HTTPException(status_code=503, detail="Database not ready")
    return db_manager.pool


def get_connection_repo(pool: asyncpg.Pool = Depends(get_db_pool)) -> DiscordConnectionRepository:
    return DiscordConnectionRepository(pool)


def get_cache_repo(pool: asyncpg.Pool = Depends(get_db_pool)) -> DiscordCacheRepository:
    return DiscordCacheRepository(pool)


def get_webhook_repo(pool: asyncpg.Pool = Depends(get_db_pool)) -> WebhookRepository:
    return WebhookRepository(pool)


# ============================================
# Discord services
# ============================================


def get_token_manager(
    repo: DiscordConnectionRepository = Depends(get_connection_repo),
    discord_api: DiscordAPIClient = Depends(get_discord_api),
) -> DiscordTokenManager:
    settings = get_settings()
    return DiscordTokenManager(
        repo,
        discord_api,
        refresh_margin=timedelta(seconds=settings.discord_token_refresh_margin_seconds),
    )


def get_resource_cache(
    cache_repo: DiscordCacheRepository = Depends(get_cache_repo),
    token_manager: DiscordTokenManager = Depends(get_token_manager),
    discord_api: DiscordAPIClient = Depends(get_discord_api),
) -> DiscordResourceCache:
    settings = get_settings()
    return DiscordResourceCache(
        cache_repo,
        token_manager,
        discord_api,
        staleness=timedelta(seconds=settings.discord_cache_staleness_seconds),
        scope_locks=_cache_scope_locks,
    )


def get_provisioner(
    webhook_repo: WebhookRepository = Depends(get_webhook_repo),
    cache_repo: DiscordCacheRepository = Depends(get_cache_repo),
    token_manager: DiscordTokenManager = Depends(get_token_manager),
    discord_api: DiscordAPIClient = Depends(get_discord_api),
) -> WebhookProvisioner:
    return WebhookProvisioner(
        webhook_repo,
        cache_repo,
        token_manager,
        discord_api,
        name_prefix=get_settings().webhook_name_prefix,
    )


def get_link_service(
    token_manager: DiscordTokenManager = Depends(get_token_manager),
    resource_cache: DiscordResourceCache = Depends(get_resource_cache),
    provisioner: WebhookProvisioner = Depends(get_provisioner),
    cache_repo: DiscordCacheRepository = Depends(get_cache_repo),
    webhook_repo: WebhookRepository = Depends(get_webhook_repo),
    discord_api: DiscordAPIClient = Depends(get_discord_api),
    state_store: OAuthStateStore = Depends(get_oauth_state_store),
) -> DiscordLinkService:
    return DiscordLinkService(
        token_manager,
        resource_cache,
        provisioner,
        cache_repo,
        webhook_repo,
        discord_api,
        state_store,
    )


# ============================================
# Authentication Dependencies
# ============================================


def _get_token_payload(auth_token: str | None = Cookie(None)) -> dict:
    """Verify JWT and return full payload"""
    auth_service = get_auth_service()

    if not auth_token:
        logger.warning("No auth token provided")
        raise HTTPException(status_code=401, detail="Not logged in")

    payload = auth_service.verify_token(auth_token)

    if not payload:
        logger.warning("Invalid or expired token")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


async def get_current_account_id(
    auth_token: str | None = Cookie(None),
) -> str:
    """Return the application account id the Discord link belongs to"""
    payload = _get_token_payload(auth_token)
    return str(payload["sub"])
