"""Managed webhook API routes"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from api.core.dependencies import get_current_account_id, get_provisioner
from api.services import WebhookProvisioner
from shared.models.discord import ManagedWebhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

# Columns that are NOT NULL (or always present in responses) and cannot be cleared
_NON_NULLABLE_FIELDS = ("name", "config", "embed_color", "include_timestamp", "enabled", "muted")


# ============================================
# Request / Response Models
# ============================================


class WebhookResponse(BaseModel):
    id: int
    name: str
    webhook_url: str  # masked
    webhook_type: str
    config: dict[str, Any]
    embed_color: str
    custom_username: str | None = None
    custom_avatar_url: str | None = None
    include_timestamp: bool
    enabled: bool
    muted: bool
    folder: str | None = None
    trigger_count: int
    last_triggered_at: datetime | None = None
    consecutive_failures: int
    last_error: str | None = None
    discord_guild_id: str | None = None
    discord_guild_name: str | None = None
    discord_channel_id: str | None = None
    discord_channel_name: str | None = None
    created_via_oauth: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_webhook(cls, webhook: ManagedWebhook) -> WebhookResponse:
        return cls(
            id=webhook.id,
            name=webhook.name,
            webhook_url=webhook.masked_url,
            webhook_type=webhook.webhook_type,
            config=webhook.config,
            embed_color=webhook.embed_color,
            custom_username=webhook.custom_username,
            custom_avatar_url=webhook.custom_avatar_url,
            include_timestamp=webhook.include_timestamp,
            enabled=webhook.enabled,
            muted=webhook.muted,
            folder=webhook.folder,
            trigger_count=webhook.trigger_count,
            last_triggered_at=webhook.last_triggered_at,
            consecutive_failures=webhook.consecutive_failures,
            last_error=webhook.last_error,
            discord_guild_id=webhook.discord_guild_id,
            discord_guild_name=webhook.discord_guild_name,
            discord_channel_id=webhook.discord_channel_id,
            discord_channel_name=webhook.discord_channel_name,
            created_via_oauth=webhook.created_via_oauth,
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
        )


class WebhookUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    config: dict[str, Any] | None = None
    embed_color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    custom_username: str | None = Field(default=None, max_length=80)
    custom_avatar_url: str | None = None
    include_timestamp: bool | None = None
    enabled: bool | None = None
    muted: bool | None = None
    folder: str | None = None

    @field_validator(*_NON_NULLABLE_FIELDS)
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        """Omit a field to leave it unchanged; only the optional text fields can be cleared"""
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class DeleteWebhookResponse(BaseModel):
    success: bool
    remote_deleted: bool
    remote_error: str | None = None


# ============================================
# Endpoints
# ============================================


@router.get("", response_model=list[WebhookResponse])
async def list_webhooks(
    account_id: str = Depends(get_current_account_id),
    provisioner: WebhookProvisioner = Depends(get_provisioner),
) -> list[WebhookResponse]:
    """All webhooks of the current account, newest first"""
    webhooks = await provisioner.list_webhooks(account_id)
    return [WebhookResponse.from_webhook(w) for w in webhooks]


@router.patch("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: int,
    body: WebhookUpdate,
    account_id: str = Depends(get_current_account_id),
    provisioner: WebhookProvisioner = Depends(get_provisioner),
) -> WebhookResponse:
    """Rename, toggle, mute or restyle a webhook"""
    updates = body.model_dump(exclude_unset=True)
    webhook = await provisioner.update_webhook(account_id, webhook_id, updates)
    return WebhookResponse.from_webhook(webhook)


@router.post("/{webhook_id}/reset-count", response_model=WebhookResponse)
async def reset_trigger_count(
    webhook_id: int,
    account_id: str = Depends(get_current_account_id),
    provisioner: WebhookProvisioner = Depends(get_provisioner),
) -> WebhookResponse:
    webhook = await provisioner.reset_trigger_count(account_id, webhook_id)
    return WebhookResponse.from_webhook(webhook)


@router.delete("/{webhook_id}", response_model=DeleteWebhookResponse)
async def delete_webhook(
    webhook_id: int,
    account_id: str = Depends(get_current_account_id),
    provisioner: WebhookProvisioner = Depends(get_provisioner),
) -> DeleteWebhookResponse:
    """Delete a webhook; Discord-side removal is best effort"""
    result = await provisioner.delete_webhook(account_id, webhook_id)
    return DeleteWebhookResponse(
        success=result.local_deleted,
        remote_deleted=result.remote_deleted,
        remote_error=result.remote_error,
    )
