"""Data models for Discord link tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

DEFAULT_EMBED_COLOR = "#5865F2"

WebhookType = Literal[
    "tracked_user_message",
    "mod_action",
    "channel_live",
    "channel_offline",
    "channel_game_change",
]


@dataclass
class DiscordConnection:
    """Discord OAuth link for one application account."""

    account_id: str
    discord_id: str | None = None
    username: str | None = None
    discriminator: str | None = None
    avatar: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None
    connected_at: datetime | None = None
    reconnect_required: bool = False

    @property
    def is_linked(self) -> bool:
        return self.discord_id is not None


@dataclass
class CachedGuild:
    """Guild the linked account can manage webhooks in."""

    account_id: str
    guild_id: str
    name: str
    icon: str | None = None
    owner: bool = False
    permissions: str | None = None
    cached_at: datetime | None = None

    @property
    def icon_url(self) -> str | None:
        if not self.icon:
            return None
        return f"https://cdn.discordapp.com/icons/{self.guild_id}/{self.icon}.png"


@dataclass
class CachedChannel:
    """Text or announcement channel inside a cached guild."""

    account_id: str
    guild_id: str
    channel_id: str
    name: str
    type: int
    position: int = 0
    parent_id: str | None = None
    parent_name: str | None = None
    cached_at: datetime | None = None


@dataclass
class ManagedWebhook:
    """Webhook record, optionally backed by a Discord webhook we created."""

    id: int
    account_id: str
    name: str
    webhook_url: str
    webhook_type: str
    config: dict[str, Any] = field(default_factory=dict)
    embed_color: str = DEFAULT_EMBED_COLOR
    custom_username: str | None = None
    custom_avatar_url: str | None = None
    include_timestamp: bool = True
    enabled: bool = True
    muted: bool = False
    folder: str | None = None
    trigger_count: int = 0
    last_triggered_at: datetime | None = None
    consecutive_failures: int = 0
    last_error: str | None = None
    discord_guild_id: str | None = None
    discord_guild_name: str | None = None
    discord_channel_id: str | None = None
    discord_channel_name: str | None = None
    discord_webhook_id: str | None = None
    created_via_oauth: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def webhook_token(self) -> str | None:
        """Secret token segment of the invocation URL."""
        if not self.webhook_url:
            return None
        return self.webhook_url.rstrip("/").rsplit("/", 1)[-1] or None

    @property
    def masked_url(self) -> str:
        return "****" + self.webhook_url[-8:]
