"""Discord OAuth token lifecycle per linked account."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from shared.models.discord import DiscordConnection
from shared.repositories.discord import DiscordConnectionRepository

from .discord_api import DiscordAPIClient, OAuthTokens
from .discord_errors import (
    NotConnectedError,
    ReconnectRequiredError,
    RemoteError,
    RemoteTransientError,
)

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN = timedelta(minutes=5)


class DiscordTokenManager:
    """Stores, refreshes and revokes Discord credentials.

    A failed refresh flags the connection as needing a reconnect but keeps
    the row, so the UI can tell "expired" apart from "never connected".
    """

    def __init__(
        self,
        repo: DiscordConnectionRepository,
        discord_api: DiscordAPIClient,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
    ) -> None:
        self.repo = repo
        self.discord_api = discord_api
        self.refresh_margin = refresh_margin

    async def get_connection(self, account_id: str) -> DiscordConnection:
        """Return the linked connection or raise ``NotConnectedError``."""
        connection = await self.repo.get_connection(account_id)
        if connection is None or not connection.is_linked:
            raise NotConnectedError(f"Account {account_id} has no Discord link")
        return connection

    def needs_refresh(self, connection: DiscordConnection, now: datetime | None = None) -> bool:
        if not connection.access_token or connection.token_expires_at is None:
            return True
        now = now or datetime.now(UTC)
        return connection.token_expires_at <= now + self.refresh_margin

    async def get_valid_access_token(self, account_id: str) -> str:
        """Return a usable access token, refreshing it when close to expiry.

        Raises:
            NotConnectedError: the account never linked Discord.
            ReconnectRequiredError: Discord rejected the refresh token.
            RemoteTransientError: Discord was unreachable during refresh.
        """
        connection = await self.get_connection(account_id)
        if not self.needs_refresh(connection):
            return str(connection.access_token)

        if not connection.refresh_token:
            await self.repo.mark_reconnect_required(account_id)
            raise ReconnectRequiredError(f"No refresh token stored for account {account_id}")

        logger.info(f"Discord token for account {account_id} expiring, refreshing")
        try:
            tokens = await self.discord_api.refresh_tokens(connection.refresh_token)
        except RemoteTransientError:
            raise
        except RemoteError as e:
            # Another worker may have rotated the refresh token while we held the old one
            latest = await self.repo.get_connection(account_id)
            if (
                latest is not None
                and latest.refresh_token != connection.refresh_token
                and not self.needs_refresh(latest)
            ):
                logger.info(f"Discord token for account {account_id} was refreshed concurrently")
                return str(latest.access_token)
            logger.error(f"Discord token refresh rejected for account {account_id}: {e}")
            await self.repo.mark_reconnect_required(account_id)
            raise ReconnectRequiredError(
                f"Refresh rejected for account {account_id}"
            ) from e

        await self.repo.update_tokens(
            account_id, tokens.access_token, tokens.refresh_token, tokens.expires_at()
        )
        logger.debug(f"Refreshed Discord token for account {account_id}")
        return tokens.access_token

    async def save_connection(
        self, account_id: str, discord_user: dict[str, Any], tokens: OAuthTokens
    ) -> None:
        """Upsert the full credential set after a successful code exchange."""
        await self.repo.save_connection(
            account_id,
            discord_id=str(discord_user["id"]),
            username=discord_user.get("username", ""),
            discriminator=discord_user.get("discriminator") or "0",
            avatar=discord_user.get("avatar"),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at(),
        )
        logger.info(f"Saved Discord link for account {account_id} ({discord_user.get('username')})")

    async def remove_connection(self, account_id: str) -> None:
        """Clear credentials and both caches. Safe to call when not linked."""
        await self.repo.remove_connection(account_id)
        logger.info(f"Removed Discord link for account {account_id}")

    async def revoke(self, access_token: str) -> bool:
        """Best-effort remote revocation; returns False instead of raising."""
        try:
            await self.discord_api.revoke_token(access_token)
            return True
        except Exception as e:
            logger.warning(f"Failed to revoke Discord token: {type(e).__name__}: {e}")
            return False
