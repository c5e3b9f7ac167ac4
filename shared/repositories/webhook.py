"""Repository for the discord_webhooks table."""

from __future__ import annotations

import json
import logging
from typing import Any

import asyncpg

from shared.models.discord import DEFAULT_EMBED_COLOR, ManagedWebhook

logger = logging.getLogger(__name__)

_WEBHOOK_COLUMNS = (
    "id, account_id, name, webhook_url, webhook_type, config, embed_color, "
    "custom_username, custom_avatar_url, include_timestamp, enabled, muted, folder, "
    "trigger_count, last_triggered_at, consecutive_failures, last_error, "
    "discord_guild_id, discord_guild_name, discord_channel_id, discord_channel_name, "
    "discord_webhook_id, created_via_oauth, created_at, updated_at"
)

# Columns the owner may change after creation. webhook_url is deliberately absent.
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "config",
        "embed_color",
        "custom_username",
        "custom_avatar_url",
        "include_timestamp",
        "enabled",
        "muted",
        "folder",
    }
)


def _row_to_webhook(row: asyncpg.Record) -> ManagedWebhook:
    data = dict(row)
    config = data.get("config")
    if isinstance(config, str):
        data["config"] = json.loads(config)
    elif config is None:
        data["config"] = {}
    return ManagedWebhook(**data)


class WebhookRepository:
    """Pure SQL operations for managed webhooks. Every query is owner-scoped."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create(
        self,
        account_id: str,
        *,
        name: str,
        webhook_url: str,
        webhook_type: str,
        config: dict[str, Any] | None = None,
        embed_color: str | None = None,
        custom_username: str | None = None,
        custom_avatar_url: str | None = None,
        include_timestamp: bool = True,
        folder: str | None = None,
        discord_guild_id: str | None = None,
        discord_guild_name: str | None = None,
        discord_channel_id: str | None = None,
        discord_channel_name: str | None = None,
        discord_webhook_id: str | None = None,
        created_via_oauth: bool = False,
    ) -> ManagedWebhook:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO discord_webhooks (
                    account_id, name, webhook_url, webhook_type, config, embed_color,
                    custom_username, custom_avatar_url, include_timestamp, folder,
                    discord_guild_id, discord_guild_name, discord_channel_id,
                    discord_channel_name, discord_webhook_id, created_via_oauth
                )
                VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
                RETURNING {_WEBHOOK_COLUMNS}
                """,
                account_id,
                name,
                webhook_url,
                webhook_type,
                json.dumps(config or {}),
                embed_color or DEFAULT_EMBED_COLOR,
                custom_username,
                custom_avatar_url,
                include_timestamp,
                folder,
                discord_guild_id,
                discord_guild_name,
                discord_channel_id,
                discord_channel_name,
                discord_webhook_id,
                created_via_oauth,
            )
            return _row_to_webhook(row)

    async def get(self, webhook_id: int, account_id: str) -> ManagedWebhook | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_WEBHOOK_COLUMNS} FROM discord_webhooks "
                "WHERE id = $1 AND account_id = $2",
                webhook_id,
                account_id,
            )
            return _row_to_webhook(row) if row else None

    async def list_for_account(self, account_id: str) -> list[ManagedWebhook]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_WEBHOOK_COLUMNS} FROM discord_webhooks "
                "WHERE account_id = $1 ORDER BY created_at DESC",
                account_id,
            )
            return [_row_to_webhook(r) for r in rows]

    async def update(
        self, webhook_id: int, account_id: str, updates: dict[str, Any]
    ) -> ManagedWebhook | None:
        """Apply whitelisted column updates. Unknown keys are ignored."""
        set_clauses: list[str] = []
        values: list[Any] = []
        for key, value in updates.items():
            if key not in UPDATABLE_FIELDS:
                continue
            values.append(json.dumps(value) if key == "config" else value)
            cast = "::jsonb" if key == "config" else ""
            set_clauses.append(f"{key} = ${len(values)}{cast}")

        if not set_clauses:
            return await self.get(webhook_id, account_id)

        values.extend([webhook_id, account_id])
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE discord_webhooks SET {", ".join(set_clauses)}, updated_at = NOW()
                WHERE id = ${len(values) - 1} AND account_id = ${len(values)}
                RETURNING {_WEBHOOK_COLUMNS}
                """,
                *values,
            )
            return _row_to_webhook(row) if row else None

    async def reset_trigger_count(self, webhook_id: int, account_id: str) -> ManagedWebhook | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE discord_webhooks SET trigger_count = 0, updated_at = NOW()
                WHERE id = $1 AND account_id = $2
                RETURNING {_WEBHOOK_COLUMNS}
                """,
                webhook_id,
                account_id,
            )
            return _row_to_webhook(row) if row else None

    async def delete(self, webhook_id: int, account_id: str) -> bool:
        async with self.pool.acquire() as conn:
            deleted = await conn.fetchval(
                "DELETE FROM discord_webhooks WHERE id = $1 AND account_id = $2 RETURNING id",
                webhook_id,
                account_id,
            )
            return deleted is not None
