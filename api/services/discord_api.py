"""Discord API client service.

Credential types:
- User Access Token (Bearer): "who am I" and "my guilds". Obtained through the
  OAuth code exchange, stored per account, refreshable.
- Bot Token: guild channel listing and webhook creation. The user's OAuth
  grant does not include webhook management, so these always use the bot.
- Client credentials (Basic): token exchange, refresh and revocation.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, cast
from urllib.parse import urlencode

from .discord_errors import NotConfiguredError, RemoteError
from .discord_http import DiscordCredential, DiscordRequestExecutor

logger = logging.getLogger(__name__)

DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
WEBHOOK_URL_BASE = "https://discord.com/api/webhooks"


@dataclass
class OAuthTokens:
    """Token set returned by an authorization-code or refresh exchange."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"
    scope: str = ""

    def expires_at(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(UTC)) + timedelta(seconds=self.expires_in)

    @classmethod
    def from_payload(cls, data: dict[str, Any], fallback_refresh: str = "") -> "OAuthTokens":
        access_token = data.get("access_token")
        if not access_token:
            raise RemoteError("No access_token in token response")
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_in=int(data.get("expires_in", 0)),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )


class DiscordAPIClient:
    """Typed wrappers around the Discord routes this service uses."""

    OAUTH_SCOPES = [
        "identify",
        "guilds",
    ]

    def __init__(
        self,
        executor: DiscordRequestExecutor,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        bot_token: str = "",
    ):
        self.executor = executor
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.bot_token = bot_token

    async def close(self) -> None:
        await self.executor.close()

    @property
    def is_configured(self) -> bool:
        """Check if Discord OAuth is configured"""
        return bool(self.client_id and self.client_secret)

    @property
    def is_bot_configured(self) -> bool:
        return bool(self.bot_token)

    def _client_credential(self) -> DiscordCredential:
        if not self.is_configured:
            raise NotConfiguredError("Discord OAuth client credentials are not set")
        return DiscordCredential.client(self.client_id, self.client_secret)

    def _bot_credential(self) -> DiscordCredential:
        if not self.is_bot_configured:
            raise NotConfiguredError(
                "Discord bot token not configured",
                user_message="Discord bot is not configured on this server",
            )
        return DiscordCredential.bot(self.bot_token)

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    def generate_oauth_url(self, state: str) -> str:
        """Generate Discord OAuth authorization URL"""
        if not self.is_configured:
            raise NotConfiguredError("Discord OAuth client credentials are not set")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.OAUTH_SCOPES),
            "state": state,
            "prompt": "consent",
        }
        return f"{DISCORD_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        """Exchange an OAuth authorization code for a token set."""
        data = await self.executor.execute(
            self._client_credential(),
            "/oauth2/token",
            "POST",
            form={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
        )
        return OAuthTokens.from_payload(data or {})

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokens:
        """Exchange a refresh token. Discord rotates the refresh token too."""
        data = await self.executor.execute(
            self._client_credential(),
            "/oauth2/token",
            "POST",
            form={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        return OAuthTokens.from_payload(data or {}, fallback_refresh=refresh_token)

    async def revoke_token(self, access_token: str) -> None:
        await self.executor.execute(
            self._client_credential(),
            "/oauth2/token/revoke",
            "POST",
            form={"token": access_token, "token_type_hint": "access_token"},
        )

    # ------------------------------------------------------------------
    # User-scoped calls
    # ------------------------------------------------------------------

    async def get_current_user(self, access_token: str) -> dict[str, Any]:
        data = await self.executor.execute(DiscordCredential.bearer(access_token), "/users/@me")
        user = cast(dict[str, Any], data or {})
        if not user.get("id"):
            raise RemoteError("Discord user payload has no id")
        return user

    async def get_user_guilds(self, access_token: str) -> list[dict[str, Any]]:
        data = await self.executor.execute(
            DiscordCredential.bearer(access_token), "/users/@me/guilds"
        )
        return cast(list[dict[str, Any]], data or [])

    # ------------------------------------------------------------------
    # Bot-scoped calls
    # ------------------------------------------------------------------

    async def get_guild_channels(self, guild_id: str) -> list[dict[str, Any]]:
        data = await self.executor.execute(self._bot_credential(), f"/guilds/{guild_id}/channels")
        return cast(list[dict[str, Any]], data or [])

    async def create_channel_webhook(self, channel_id: str, name: str) -> dict[str, Any]:
        """Create a webhook in a channel. Response carries ``id`` and ``token``."""
        # Discord wants avatars as base64 data URIs; customization happens per message instead
        data = await self.executor.execute(
            self._bot_credential(),
            f"/channels/{channel_id}/webhooks",
            "POST",
            json={"name": name[:80]},
        )
        return cast(dict[str, Any], data or {})

    async def delete_webhook(self, webhook_id: str, webhook_token: str) -> None:
        """Delete a webhook using its own token. A 404 counts as deleted."""
        try:
            await self.executor.execute(None, f"/webhooks/{webhook_id}/{webhook_token}", "DELETE")
        except RemoteError as e:
            if e.is_not_found:
                logger.debug(f"Discord webhook {webhook_id} already gone")
                return
            raise

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    @staticmethod
    def webhook_url(webhook_id: str, webhook_token: str) -> str:
        return f"{WEBHOOK_URL_BASE}/{webhook_id}/{webhook_token}"

    @staticmethod
    def get_avatar_url(user_id: str, avatar_hash: str | None) -> str:
        """Generate Discord avatar URL"""
        if avatar_hash:
            ext = "gif" if avatar_hash.startswith("a_") else "png"
            return f"https://cdn.discordapp.com/avatars/{user_id}/{avatar_hash}.{ext}"
        # Default avatar
        try:
            default_avatar_index = (int(user_id) >> 22) % 6
        except ValueError:
            default_avatar_index = 0
        return f"https://cdn.discordapp.com/embed/avatars/{default_avatar_index}.png"
