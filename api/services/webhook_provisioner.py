"""Creation and cleanup of Discord webhooks on behalf of linked accounts.

A create request moves through four checks in order: the account is linked,
the guild is in its cached (manageable) set, the bot is configured, and the
channel is known to the channel cache. Only then is the remote webhook
created and the local record written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from shared.models.discord import ManagedWebhook, WebhookType
from shared.repositories.discord import DiscordCacheRepository
from shared.repositories.webhook import WebhookRepository

from .discord_api import DiscordAPIClient
from .discord_errors import (
    MAX_WEBHOOKS,
    ForbiddenError,
    NotConfiguredError,
    NotFoundError,
    QuotaExceededError,
    RemoteError,
)
from .discord_permissions import PermissionFilter
from .discord_token_service import DiscordTokenManager

logger = logging.getLogger(__name__)

DEFAULT_NAME_PREFIX = "Chatterbox"


@dataclass
class WebhookSpec:
    """User-supplied settings for a webhook being provisioned."""

    name: str
    webhook_type: WebhookType
    config: dict[str, Any] = field(default_factory=dict)
    embed_color: str | None = None
    custom_username: str | None = None
    custom_avatar_url: str | None = None
    include_timestamp: bool = True
    folder: str | None = None


@dataclass
class CleanupResult:
    """Outcome of a delete; the local row is gone even when remote failed."""

    webhook_id: int
    local_deleted: bool = True
    remote_attempted: bool = False
    remote_deleted: bool = False
    remote_error: str | None = None


def _translate_create_error(e: RemoteError) -> Exception:
    if e.is_permission_error:
        return ForbiddenError(
            str(e),
            user_message="Bot does not have permission to create webhooks in this channel",
        )
    if e.remote_code == MAX_WEBHOOKS:
        return QuotaExceededError(str(e))
    if e.is_not_found:
        return NotFoundError(str(e), user_message="Channel not found on Discord")
    return e


class WebhookProvisioner:
    def __init__(
        self,
        webhook_repo: WebhookRepository,
        cache_repo: DiscordCacheRepository,
        token_manager: DiscordTokenManager,
        discord_api: DiscordAPIClient,
        name_prefix: str = DEFAULT_NAME_PREFIX,
    ) -> None:
        self.webhook_repo = webhook_repo
        self.cache_repo = cache_repo
        self.token_manager = token_manager
        self.discord_api = discord_api
        self.name_prefix = name_prefix
        self.permissions = PermissionFilter(cache_repo)

    # ==================== Create ====================

    async def create_remote_webhook(
        self, account_id: str, guild_id: str, channel_id: str, spec: WebhookSpec
    ) -> ManagedWebhook:
        """Create a Discord webhook in *channel_id* and record it.

        Not deduplicated: two identical calls produce two webhooks.

        Raises:
            NotConnectedError, ForbiddenError, NotConfiguredError,
            NotFoundError, QuotaExceededError, RemoteError
        """
        await self.token_manager.get_connection(account_id)

        if not await self.permissions.user_has_guild_access(account_id, guild_id):
            raise ForbiddenError(f"Account {account_id} cannot manage guild {guild_id}")

        if not self.discord_api.is_bot_configured:
            raise NotConfiguredError(
                "Discord bot token not configured",
                user_message="Discord bot is not configured on this server",
            )

        guild = await self.cache_repo.get_guild(account_id, guild_id)
        channel = await self.cache_repo.get_channel(account_id, guild_id, channel_id)
        if channel is None:
            raise NotFoundError(
                f"Channel {channel_id} not cached for guild {guild_id}",
                user_message="Channel not found - refresh the channel list and try again",
            )

        remote_name = f"{self.name_prefix} - {spec.name}"
        try:
            created = await self.discord_api.create_channel_webhook(channel_id, remote_name)
        except RemoteError as e:
            raise _translate_create_error(e) from e

        remote_id = created.get("id")
        remote_token = created.get("token")
        if not remote_id or not remote_token:
            if remote_id:
                logger.error(
                    f"Discord webhook {remote_id} in channel {channel_id} was created "
                    "without a token and is orphaned"
                )
            raise RemoteError("Webhook creation response is missing id or token")

        try:
            webhook = await self.webhook_repo.create(
                account_id,
                name=spec.name,
                webhook_url=self.discord_api.webhook_url(str(remote_id), remote_token),
                webhook_type=spec.webhook_type,
                config=spec.config,
                embed_color=spec.embed_color,
                custom_username=spec.custom_username,
                custom_avatar_url=spec.custom_avatar_url,
                include_timestamp=spec.include_timestamp,
                folder=spec.folder,
                discord_guild_id=guild_id,
                discord_guild_name=guild.name if guild else None,
                discord_channel_id=channel_id,
                discord_channel_name=channel.name,
                discord_webhook_id=str(remote_id),
                created_via_oauth=True,
            )
        except Exception:
            await self._discard_remote(str(remote_id), remote_token)
            raise
        logger.info(
            f"Created Discord webhook {remote_id} in #{channel.name} for account {account_id}"
        )
        return webhook

    async def _discard_remote(self, remote_id: str, remote_token: str) -> None:
        """Roll back a remote webhook whose local record could not be written."""
        try:
            await self.discord_api.delete_webhook(remote_id, remote_token)
            logger.warning(f"Rolled back Discord webhook {remote_id} after a failed save")
        except RemoteError as e:
            logger.error(f"Discord webhook {remote_id} is orphaned, rollback failed: {e}")

    # ==================== Delete ====================

    async def delete_webhook(self, account_id: str, webhook_id: int) -> CleanupResult:
        """Remove a webhook locally, deleting the Discord side when we own it."""
        webhook = await self.webhook_repo.get(webhook_id, account_id)
        if webhook is None:
            raise NotFoundError(
                f"Webhook {webhook_id} not found for account {account_id}",
                user_message="Webhook not found",
            )

        result = CleanupResult(webhook_id=webhook_id)
        if webhook.created_via_oauth and webhook.discord_webhook_id and webhook.webhook_token:
            result.remote_attempted = True
            try:
                await self.discord_api.delete_webhook(
                    webhook.discord_webhook_id, webhook.webhook_token
                )
                result.remote_deleted = True
            except RemoteError as e:
                result.remote_error = e.user_message
                logger.warning(
                    f"Failed to delete Discord webhook {webhook.discord_webhook_id}: {e}"
                )

        result.local_deleted = await self.webhook_repo.delete(webhook_id, account_id)
        logger.info(f"Deleted webhook {webhook_id} for account {account_id}")
        return result

    async def delete_oauth_webhooks(self, account_id: str) -> list[CleanupResult]:
        """Delete every webhook this service created for the account."""
        results = []
        for webhook in await self.webhook_repo.list_for_account(account_id):
            if webhook.created_via_oauth:
                results.append(await self.delete_webhook(account_id, webhook.id))
        return results

    # ==================== Manage ====================

    async def list_webhooks(self, account_id: str) -> list[ManagedWebhook]:
        return await self.webhook_repo.list_for_account(account_id)

    async def update_webhook(
        self, account_id: str, webhook_id: int, updates: dict[str, Any]
    ) -> ManagedWebhook:
        webhook = await self.webhook_repo.update(webhook_id, account_id, updates)
        if webhook is None:
            raise NotFoundError(f"Webhook {webhook_id} not found", user_message="Webhook not found")
        return webhook

    async def reset_trigger_count(self, account_id: str, webhook_id: int) -> ManagedWebhook:
        webhook = await self.webhook_repo.reset_trigger_count(webhook_id, account_id)
        if webhook is None:
            raise NotFoundError(f"Webhook {webhook_id} not found", user_message="Webhook not found")
        return webhook
