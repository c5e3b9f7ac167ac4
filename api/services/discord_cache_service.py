"""Staleness-bounded mirror of a linked account's Discord guilds and channels.

Reads are served from the database while the snapshot is younger than the
staleness window; otherwise the listing is fetched from Discord and the
scope (account, or account + guild) is replaced in one transaction.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from shared.models.discord import CachedChannel, CachedGuild
from shared.repositories.discord import DiscordCacheRepository

from .discord_api import DiscordAPIClient
from .discord_errors import ForbiddenError, NotConfiguredError, RemoteError
from .discord_permissions import PermissionFilter, has_manage_capability
from .discord_token_service import DiscordTokenManager

logger = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(minutes=5)

GUILD_TEXT = 0
GUILD_CATEGORY = 4
GUILD_ANNOUNCEMENT = 5
TARGETABLE_CHANNEL_TYPES = frozenset({GUILD_TEXT, GUILD_ANNOUNCEMENT})

_BOT_MISSING_MESSAGE = "Bot does not have access to this server - please invite the bot first"


def is_stale(cached_at: datetime | None, now: datetime, window: timedelta) -> bool:
    """True when there is no snapshot or it is older than *window*."""
    if cached_at is None:
        return True
    return now - cached_at > window


def guilds_from_payload(
    account_id: str, payload: list[dict[str, Any]], cached_at: datetime
) -> list[CachedGuild]:
    """Keep only guilds the account can manage webhooks in."""
    guilds = []
    for g in payload:
        if not g.get("id") or not has_manage_capability(g.get("permissions")):
            continue
        guilds.append(
            CachedGuild(
                account_id=account_id,
                guild_id=str(g["id"]),
                name=g.get("name", ""),
                icon=g.get("icon"),
                owner=bool(g.get("owner", False)),
                permissions=str(g.get("permissions")),
                cached_at=cached_at,
            )
        )
    return guilds


def channels_from_payload(
    account_id: str, guild_id: str, payload: list[dict[str, Any]], cached_at: datetime
) -> list[CachedChannel]:
    """Keep text/announcement channels and resolve their category names."""
    categories = {
        str(c["id"]): c.get("name")
        for c in payload
        if c.get("id") and c.get("type") == GUILD_CATEGORY
    }
    channels = []
    for c in payload:
        if not c.get("id") or c.get("type") not in TARGETABLE_CHANNEL_TYPES:
            continue
        parent_id = str(c["parent_id"]) if c.get("parent_id") else None
        channels.append(
            CachedChannel(
                account_id=account_id,
                guild_id=guild_id,
                channel_id=str(c["id"]),
                name=c.get("name", ""),
                type=int(c["type"]),
                position=int(c.get("position") or 0),
                parent_id=parent_id,
                parent_name=categories.get(parent_id) if parent_id else None,
                cached_at=cached_at,
            )
        )
    return channels


def group_by_category(channels: list[CachedChannel]) -> dict[str, list[Any]]:
    """Split channels into category groups plus the uncategorized rest."""
    categorized: dict[str, dict[str, Any]] = {}
    uncategorized: list[CachedChannel] = []
    for channel in channels:
        if channel.parent_id:
            group = categorized.setdefault(
                channel.parent_id,
                {
                    "id": channel.parent_id,
                    "name": channel.parent_name or "Unknown Category",
                    "channels": [],
                },
            )
            group["channels"].append(channel)
        else:
            uncategorized.append(channel)
    return {"categorized": list(categorized.values()), "uncategorized": uncategorized}


class DiscordResourceCache:
    """Read-through cache of guilds and channels, scoped per account."""

    def __init__(
        self,
        repo: DiscordCacheRepository,
        token_manager: DiscordTokenManager,
        discord_api: DiscordAPIClient,
        staleness: timedelta = DEFAULT_STALENESS,
        scope_locks: dict[tuple[str, ...], asyncio.Lock] | None = None,
    ) -> None:
        self.repo = repo
        self.token_manager = token_manager
        self.discord_api = discord_api
        self.staleness = staleness
        self.permissions = PermissionFilter(repo)
        # Shared across instances when the caller passes a process-wide dict
        self._scope_locks = scope_locks if scope_locks is not None else {}

    def _lock_for(self, *scope: str) -> asyncio.Lock:
        lock = self._scope_locks.get(scope)
        if lock is None:
            lock = self._scope_locks[scope] = asyncio.Lock()
        return lock

    # ==================== Guilds ====================

    async def list_guilds(self, account_id: str, force_refresh: bool = False) -> list[CachedGuild]:
        await self.token_manager.get_connection(account_id)
        if not force_refresh:
            cached_at = await self.repo.guilds_cached_at(account_id)
            if not is_stale(cached_at, datetime.now(UTC), self.staleness):
                return await self.repo.list_guilds(account_id)
        return await self.refresh_guilds(account_id)

    async def refresh_guilds(self, account_id: str) -> list[CachedGuild]:
        """Fetch the account's guilds from Discord and replace the cache."""
        async with self._lock_for(account_id, "guilds"):
            access_token = await self.token_manager.get_valid_access_token(account_id)
            payload = await self.discord_api.get_user_guilds(access_token)
            guilds = guilds_from_payload(account_id, payload, datetime.now(UTC))
            await self.repo.replace_guilds(account_id, guilds)
            logger.info(
                f"Cached {len(guilds)}/{len(payload)} manageable guilds for account {account_id}"
            )
        return await self.repo.list_guilds(account_id)

    # ==================== Channels ====================

    async def list_channels(
        self, account_id: str, guild_id: str, force_refresh: bool = False
    ) -> list[CachedChannel]:
        await self.token_manager.get_connection(account_id)
        if not await self.permissions.user_has_guild_access(account_id, guild_id):
            raise ForbiddenError(f"Account {account_id} has no cached access to guild {guild_id}")

        if not force_refresh:
            cached_at = await self.repo.channels_cached_at(account_id, guild_id)
            if not is_stale(cached_at, datetime.now(UTC), self.staleness):
                return await self.repo.list_channels(account_id, guild_id)
        return await self.refresh_channels(account_id, guild_id)

    async def refresh_channels(self, account_id: str, guild_id: str) -> list[CachedChannel]:
        """Fetch a guild's channels with the bot token and replace the cache."""
        if not self.discord_api.is_bot_configured:
            raise NotConfiguredError(
                "Discord bot token not configured",
                user_message="Discord bot is not configured on this server",
            )
        async with self._lock_for(account_id, "channels", guild_id):
            try:
                payload = await self.discord_api.get_guild_channels(guild_id)
            except RemoteError as e:
                if e.is_permission_error:
                    raise ForbiddenError(str(e), user_message=_BOT_MISSING_MESSAGE) from e
                raise
            channels = channels_from_payload(account_id, guild_id, payload, datetime.now(UTC))
            await self.repo.replace_channels(account_id, guild_id, channels)
            logger.debug(f"Cached {len(channels)} channels of guild {guild_id}")
        return await self.repo.list_channels(account_id, guild_id)
