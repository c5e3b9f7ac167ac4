"""API Routers package

Routers are organized by feature domain.
"""

from . import discord_router, webhooks_router

__all__ = [
    "discord_router",
    "webhooks_router",
]
