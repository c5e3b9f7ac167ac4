"""Shared data models for the Discord link service."""

from .discord import (
    DEFAULT_EMBED_COLOR,
    CachedChannel,
    CachedGuild,
    DiscordConnection,
    ManagedWebhook,
    WebhookType,
)

__all__ = [
    "DEFAULT_EMBED_COLOR",
    "CachedChannel",
    "CachedGuild",
    "DiscordConnection",
    "ManagedWebhook",
    "WebhookType",
]
