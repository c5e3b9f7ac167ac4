"""Shared repository layer for the Discord link service."""

from .discord import DiscordCacheRepository, DiscordConnectionRepository
from .webhook import WebhookRepository

__all__ = [
    "DiscordCacheRepository",
    "DiscordConnectionRepository",
    "WebhookRepository",
]
