"""Discord link API routes"""

import logging
from datetime import datetime
from urllib.parse import quote

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from api.core.config import Settings, get_settings
from api.core.dependencies import (
    get_current_account_id,
    get_link_service,
    get_provisioner,
    get_resource_cache,
)
from api.routers.webhooks_router import WebhookResponse
from api.services import (
    DiscordLinkService,
    DiscordResourceCache,
    WebhookProvisioner,
    WebhookSpec,
    group_by_category,
)
from api.services.discord_errors import DiscordLinkError
from shared.models.discord import CachedChannel, CachedGuild, WebhookType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/discord", tags=["discord"])

DEFAULT_RETURN_PATH = "/webhooks"


# ============================================
# Request / Response Models
# ============================================


class StatusResponse(BaseModel):
    connected: bool
    discord_id: str | None = None
    username: str | None = None
    avatar_url: str | None = None
    connected_at: datetime | None = None
    expired: bool = False
    guilds_count: int = 0
    channels_count: int = 0


class ConnectResponse(BaseModel):
    url: str


class DisconnectRequest(BaseModel):
    delete_webhooks: bool = False


class DisconnectResponse(BaseModel):
    success: bool
    message: str
    remote_failures: list[int] = []


class GuildResponse(BaseModel):
    id: str
    name: str
    icon_url: str | None = None
    owner: bool = False

    @classmethod
    def from_guild(cls, guild: CachedGuild) -> "GuildResponse":
        return cls(id=guild.guild_id, name=guild.name, icon_url=guild.icon_url, owner=guild.owner)


class GuildsResponse(BaseModel):
    guilds: list[GuildResponse]


class ChannelResponse(BaseModel):
    id: str
    name: str
    type: int
    position: int
    parent_id: str | None = None
    parent_name: str | None = None

    @classmethod
    def from_channel(cls, channel: CachedChannel) -> "ChannelResponse":
        return cls(
            id=channel.channel_id,
            name=channel.name,
            type=channel.type,
            position=channel.position,
            parent_id=channel.parent_id,
            parent_name=channel.parent_name,
        )


class CategoryResponse(BaseModel):
    id: str
    name: str
    channels: list[ChannelResponse]


class ChannelsResponse(BaseModel):
    channels: list[ChannelResponse]
    categorized: list[CategoryResponse]
    uncategorized: list[ChannelResponse]


class CreateWebhookRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    webhook_type: WebhookType
    config: dict = Field(default_factory=dict)
    embed_color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    custom_username: str | None = Field(default=None, max_length=80)
    custom_avatar_url: str | None = None
    include_timestamp: bool = True
    folder: str | None = None


class CreateWebhookResponse(BaseModel):
    webhook: WebhookResponse
    discord_webhook_id: str | None


class RefreshResponse(BaseModel):
    success: bool
    guilds_count: int
    webhooks_count: int


# ============================================
# Helpers
# ============================================


def _safe_return_path(return_url: str | None) -> str:
    """Only same-site paths are allowed as post-OAuth destinations."""
    if not return_url or not return_url.startswith("/") or return_url.startswith("//"):
        return DEFAULT_RETURN_PATH
    return return_url


# ============================================
# Endpoints
# ============================================


@router.get("/status", response_model=StatusResponse)
async def get_status(
    account_id: str = Depends(get_current_account_id),
    link_service: DiscordLinkService = Depends(get_link_service),
) -> StatusResponse:
    """Discord connection status of the current account"""
    return StatusResponse(**await link_service.connection_status(account_id))


@router.get("/connect", response_model=ConnectResponse)
async def connect(
    return_url: str | None = None,
    account_id: str = Depends(get_current_account_id),
    link_service: DiscordLinkService = Depends(get_link_service),
) -> ConnectResponse:
    """Start the OAuth flow; the frontend navigates to the returned URL"""
    url = link_service.begin_connect(account_id, _safe_return_path(return_url))
    return ConnectResponse(url=url)


@router.get("/callback")
async def oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    link_service: DiscordLinkService = Depends(get_link_service),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """Handle Discord OAuth callback"""
    error_redirect = f"{settings.frontend_url}{DEFAULT_RETURN_PATH}"

    if error:
        logger.error(f"OAuth error from Discord: {error}")
        return RedirectResponse(url=f"{error_redirect}?error={quote(error_description or error)}")

    if not state:
        return RedirectResponse(url=f"{error_redirect}?error=invalid_state")

    if not code:
        logger.error("No OAuth code received from Discord")
        return RedirectResponse(url=f"{error_redirect}?error=no_code")

    try:
        pending = await link_service.complete_connect(code, state)
    except DiscordLinkError as e:
        logger.error(f"Discord OAuth callback failed: {type(e).__name__}: {e}")
        return RedirectResponse(url=f"{error_redirect}?error=discord_auth_failed")

    return RedirectResponse(url=f"{settings.frontend_url}{pending.return_url}?discord=connected")


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect(
    body: DisconnectRequest | None = None,
    account_id: str = Depends(get_current_account_id),
    link_service: DiscordLinkService = Depends(get_link_service),
) -> DisconnectResponse:
    """Unlink Discord, optionally deleting webhooks created through it"""
    delete_webhooks = body.delete_webhooks if body else False
    result = await link_service.disconnect(account_id, delete_remote=delete_webhooks)
    return DisconnectResponse(
        success=True,
        message=result.message,
        remote_failures=[f.webhook_id for f in result.remote_failures],
    )


@router.get("/guilds", response_model=GuildsResponse)
async def list_guilds(
    refresh: bool = False,
    account_id: str = Depends(get_current_account_id),
    resource_cache: DiscordResourceCache = Depends(get_resource_cache),
) -> GuildsResponse:
    """Guilds where the account can manage webhooks"""
    guilds = await resource_cache.list_guilds(account_id, force_refresh=refresh)
    return GuildsResponse(guilds=[GuildResponse.from_guild(g) for g in guilds])


@router.get("/guilds/{guild_id}/channels", response_model=ChannelsResponse)
async def list_channels(
    guild_id: str,
    refresh: bool = False,
    account_id: str = Depends(get_current_account_id),
    resource_cache: DiscordResourceCache = Depends(get_resource_cache),
) -> ChannelsResponse:
    """Text and announcement channels of a guild, grouped by category"""
    channels = await resource_cache.list_channels(account_id, guild_id, force_refresh=refresh)
    grouped = group_by_category(channels)
    return ChannelsResponse(
        channels=[ChannelResponse.from_channel(c) for c in channels],
        categorized=[
            CategoryResponse(
                id=group["id"],
                name=group["name"],
                channels=[ChannelResponse.from_channel(c) for c in group["channels"]],
            )
            for group in grouped["categorized"]
        ],
        uncategorized=[ChannelResponse.from_channel(c) for c in grouped["uncategorized"]],
    )


@router.post(
    "/guilds/{guild_id}/channels/{channel_id}/webhook",
    response_model=CreateWebhookResponse,
    status_code=201,
)
async def create_webhook(
    guild_id: str,
    channel_id: str,
    body: CreateWebhookRequest,
    account_id: str = Depends(get_current_account_id),
    provisioner: WebhookProvisioner = Depends(get_provisioner),
) -> CreateWebhookResponse:
    """Create a Discord webhook in a channel and start managing it"""
    spec = WebhookSpec(
        name=body.name,
        webhook_type=body.webhook_type,
        config=body.config,
        embed_color=body.embed_color,
        custom_username=body.custom_username,
        custom_avatar_url=body.custom_avatar_url,
        include_timestamp=body.include_timestamp,
        folder=body.folder,
    )
    webhook = await provisioner.create_remote_webhook(account_id, guild_id, channel_id, spec)
    return CreateWebhookResponse(
        webhook=WebhookResponse.from_webhook(webhook),
        discord_webhook_id=webhook.discord_webhook_id,
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    account_id: str = Depends(get_current_account_id),
    link_service: DiscordLinkService = Depends(get_link_service),
) -> RefreshResponse:
    """Re-fetch guilds from Discord"""
    counts = await link_service.refresh(account_id)
    return RefreshResponse(success=True, **counts)
