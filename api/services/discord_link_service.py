"""Account-level Discord link flow: status, OAuth connect, disconnect, refresh."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from cachetools import TTLCache  # type: ignore[import-untyped]

from shared.repositories.discord import DiscordCacheRepository
from shared.repositories.webhook import WebhookRepository

from .discord_api import DiscordAPIClient
from .discord_cache_service import DiscordResourceCache
from .discord_errors import DiscordLinkError, ForbiddenError
from .discord_token_service import DiscordTokenManager
from .webhook_provisioner import CleanupResult, WebhookProvisioner

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL = 600


@dataclass
class PendingConnect:
    account_id: str
    return_url: str


class OAuthStateStore:
    """Short-lived, single-use CSRF states for the OAuth redirect."""

    def __init__(
        self,
        ttl: float = OAUTH_STATE_TTL,
        maxsize: int = 1024,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._states: TTLCache[str, PendingConnect] = TTLCache(
            maxsize=maxsize, ttl=ttl, timer=timer
        )
        self._lock = threading.Lock()

    def issue(self, account_id: str, return_url: str) -> str:
        state = secrets.token_hex(32)
        with self._lock:
            self._states[state] = PendingConnect(account_id, return_url)
        return state

    def consume(self, state: str) -> PendingConnect | None:
        """Return and forget the pending connect, or None if unknown/expired."""
        with self._lock:
            return self._states.pop(state, None)


@dataclass
class DisconnectResult:
    webhooks_deleted: int = 0
    token_revoked: bool = False
    remote_failures: list[CleanupResult] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.remote_failures:
            return (
                f"Discord disconnected; {len(self.remote_failures)} webhook(s) "
                "could not be removed from Discord"
            )
        return "Discord disconnected"


class DiscordLinkService:
    def __init__(
        self,
        token_manager: DiscordTokenManager,
        resource_cache: DiscordResourceCache,
        provisioner: WebhookProvisioner,
        cache_repo: DiscordCacheRepository,
        webhook_repo: WebhookRepository,
        discord_api: DiscordAPIClient,
        state_store: OAuthStateStore,
    ) -> None:
        self.token_manager = token_manager
        self.resource_cache = resource_cache
        self.provisioner = provisioner
        self.cache_repo = cache_repo
        self.webhook_repo = webhook_repo
        self.discord_api = discord_api
        self.state_store = state_store

    async def connection_status(self, account_id: str) -> dict[str, Any]:
        connection = await self.token_manager.repo.get_connection(account_id)
        if connection is None or not connection.is_linked:
            return {"connected": False}

        return {
            "connected": True,
            "discord_id": connection.discord_id,
            "username": connection.username,
            "avatar_url": self.discord_api.get_avatar_url(
                str(connection.discord_id), connection.avatar
            ),
            "connected_at": connection.connected_at,
            "expired": connection.reconnect_required,
            "guilds_count": await self.cache_repo.count_guilds(account_id),
            "channels_count": await self.cache_repo.count_channels(account_id),
        }

    def begin_connect(self, account_id: str, return_url: str) -> str:
        """Return the Discord authorize URL for a fresh single-use state."""
        state = self.state_store.issue(account_id, return_url)
        url = self.discord_api.generate_oauth_url(state)
        logger.debug(f"Issued Discord OAuth state for account {account_id}")
        return url

    async def complete_connect(self, code: str, state: str) -> PendingConnect:
        """Finish the OAuth redirect and store the link.

        Guild cache warm-up failures are logged; the link itself stands.
        """
        pending = self.state_store.consume(state)
        if pending is None:
            raise ForbiddenError(
                "Unknown or expired OAuth state",
                user_message="Discord authorization expired - please try again",
            )

        tokens = await self.discord_api.exchange_code(code)
        discord_user = await self.discord_api.get_current_user(tokens.access_token)
        await self.token_manager.save_connection(pending.account_id, discord_user, tokens)

        try:
            await self.resource_cache.refresh_guilds(pending.account_id)
        except DiscordLinkError as e:
            logger.warning(f"Initial guild cache for account {pending.account_id} failed: {e}")
        return pending

    async def disconnect(self, account_id: str, delete_remote: bool = False) -> DisconnectResult:
        """Unlink Discord. Remote cleanup is best effort; local removal always happens."""
        connection = await self.token_manager.get_connection(account_id)
        result = DisconnectResult()

        if delete_remote:
            for cleanup in await self.provisioner.delete_oauth_webhooks(account_id):
                result.webhooks_deleted += 1
                if cleanup.remote_attempted and not cleanup.remote_deleted:
                    result.remote_failures.append(cleanup)

        if connection.access_token:
            result.token_revoked = await self.token_manager.revoke(connection.access_token)

        await self.token_manager.remove_connection(account_id)
        logger.info(
            f"Disconnected Discord for account {account_id} "
            f"(webhooks_deleted={result.webhooks_deleted}, "
            f"remote_failures={len(result.remote_failures)})"
        )
        return result

    async def refresh(self, account_id: str) -> dict[str, int]:
        """Force a guild refresh and report counts."""
        guilds = await self.resource_cache.list_guilds(account_id, force_refresh=True)
        webhooks = await self.webhook_repo.list_for_account(account_id)
        return {"guilds_count": len(guilds), "webhooks_count": len(webhooks)}

