"""Repository for discord_connections and the guild/channel cache tables."""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg

from shared.models.discord import CachedChannel, CachedGuild, DiscordConnection

logger = logging.getLogger(__name__)

_CONNECTION_COLUMNS = (
    "account_id, discord_id, username, discriminator, avatar, access_token, "
    "refresh_token, token_expires_at, connected_at, reconnect_required"
)
_GUILD_COLUMNS = "account_id, guild_id, name, icon, owner, permissions, cached_at"
_CHANNEL_COLUMNS = (
    "account_id, guild_id, channel_id, name, type, position, parent_id, parent_name, cached_at"
)


class DiscordConnectionRepository:
    """Pure SQL operations for discord_connections."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_connection(self, account_id: str) -> DiscordConnection | None:
        """Read the row directly; tokens may be rotated by any worker."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CONNECTION_COLUMNS} FROM discord_connections WHERE account_id = $1",
                account_id,
            )
            if not row:
                return None
            return DiscordConnection(**dict(row))

    async def save_connection(
        self,
        account_id: str,
        *,
        discord_id: str,
        username: str,
        discriminator: str | None,
        avatar: str | None,
        access_token: str,
        refresh_token: str,
        token_expires_at: datetime,
    ) -> None:
        """Insert or replace the full credential set for an account."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO discord_connections (
                    account_id, discord_id, username, discriminator, avatar,
                    access_token, refresh_token, token_expires_at,
                    connected_at, reconnect_required
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, NOW(), FALSE)
                ON CONFLICT (account_id) DO UPDATE SET
                    discord_id         = EXCLUDED.discord_id,
                    username           = EXCLUDED.username,
                    discriminator      = EXCLUDED.discriminator,
                    avatar             = EXCLUDED.avatar,
                    access_token       = EXCLUDED.access_token,
                    refresh_token      = EXCLUDED.refresh_token,
                    token_expires_at   = EXCLUDED.token_expires_at,
                    connected_at       = NOW(),
                    reconnect_required = FALSE
                """,
                account_id,
                discord_id,
                username,
                discriminator,
                avatar,
                access_token,
                refresh_token,
                token_expires_at,
            )

    async def update_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: str,
        token_expires_at: datetime,
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE discord_connections SET
                    access_token       = $2,
                    refresh_token      = $3,
                    token_expires_at   = $4,
                    reconnect_required = FALSE
                WHERE account_id = $1
                """,
                account_id,
                access_token,
                refresh_token,
                token_expires_at,
            )

    async def mark_reconnect_required(self, account_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE discord_connections SET reconnect_required = TRUE WHERE account_id = $1",
                account_id,
            )

    async def remove_connection(self, account_id: str) -> None:
        """Delete the link and both caches for the account in one transaction."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM discord_connections WHERE account_id = $1", account_id
                )
                await conn.execute(
                    "DELETE FROM discord_guild_cache WHERE account_id = $1", account_id
                )
                await conn.execute(
                    "DELETE FROM discord_channel_cache WHERE account_id = $1", account_id
                )


class DiscordCacheRepository:
    """Per-account mirror of remote guilds and channels."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Guilds ====================

    async def replace_guilds(self, account_id: str, guilds: list[CachedGuild]) -> None:
        """Swap the account's guild rows for *guilds* atomically."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM discord_guild_cache WHERE account_id = $1", account_id
                )
                if guilds:
                    await conn.executemany(
                        f"INSERT INTO discord_guild_cache ({_GUILD_COLUMNS}) "
                        "VALUES ($1, $2, $3, $4, $5, $6, $7)",
                        [
                            (
                                account_id,
                                g.guild_id,
                                g.name,
                                g.icon,
                                g.owner,
                                g.permissions,
                                g.cached_at,
                            )
                            for g in guilds
                        ],
                    )

    async def list_guilds(self, account_id: str) -> list[CachedGuild]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_GUILD_COLUMNS} FROM discord_guild_cache "
                "WHERE account_id = $1 ORDER BY name",
                account_id,
            )
            return [CachedGuild(**dict(r)) for r in rows]

    async def get_guild(self, account_id: str, guild_id: str) -> CachedGuild | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_GUILD_COLUMNS} FROM discord_guild_cache "
                "WHERE account_id = $1 AND guild_id = $2",
                account_id,
                guild_id,
            )
            return CachedGuild(**dict(row)) if row else None

    async def guilds_cached_at(self, account_id: str) -> datetime | None:
        """Oldest cached_at of the account's guild rows, None when empty."""
        async with self.pool.acquire() as conn:
            value: datetime | None = await conn.fetchval(
                "SELECT MIN(cached_at) FROM discord_guild_cache WHERE account_id = $1",
                account_id,
            )
            return value

    async def count_guilds(self, account_id: str) -> int:
        async with self.pool.acquire() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM discord_guild_cache WHERE account_id = $1", account_id
            )
            return int(count or 0)

    # ==================== Channels ====================

    async def replace_channels(
        self, account_id: str, guild_id: str, channels: list[CachedChannel]
    ) -> None:
        """Swap the channel rows of one guild atomically."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM discord_channel_cache WHERE account_id = $1 AND guild_id = $2",
                    account_id,
                    guild_id,
                )
                if channels:
                    await conn.executemany(
                        f"INSERT INTO discord_channel_cache ({_CHANNEL_COLUMNS}) "
                        "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)",
                        [
                            (
                                account_id,
                                guild_id,
                                c.channel_id,
                                c.name,
                                c.type,
                                c.position,
                                c.parent_id,
                                c.parent_name,
                                c.cached_at,
                            )
                            for c in channels
                        ],
                    )

    async def list_channels(self, account_id: str, guild_id: str) -> list[CachedChannel]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_CHANNEL_COLUMNS} FROM discord_channel_cache "
                "WHERE account_id = $1 AND guild_id = $2 ORDER BY position",
                account_id,
                guild_id,
            )
            return [CachedChannel(**dict(r)) for r in rows]

    async def get_channel(
        self, account_id: str, guild_id: str, channel_id: str
    ) -> CachedChannel | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CHANNEL_COLUMNS} FROM discord_channel_cache "
                "WHERE account_id = $1 AND guild_id = $2 AND channel_id = $3",
                account_id,
                guild_id,
                channel_id,
            )
            return CachedChannel(**dict(row)) if row else None

    async def channels_cached_at(self, account_id: str, guild_id: str) -> datetime | None:
        async with self.pool.acquire() as conn:
            value: datetime | None = await conn.fetchval(
                "SELECT MIN(cached_at) FROM discord_channel_cache "
                "WHERE account_id = $1 AND guild_id = $2",
                account_id,
                guild_id,
            )
            return value

    async def count_channels(self, account_id: str) -> int:
        async with self.pool.acquire() as conn:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM discord_channel_cache WHERE account_id = $1", account_id
            )
            return int(count or 0)
