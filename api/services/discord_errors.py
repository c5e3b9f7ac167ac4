"""Errors surfaced by the Discord integration.

Every class carries the HTTP status and machine code the API layer
responds with, plus a ``user_message`` that tells the user what to do.
"""

from __future__ import annotations

# Discord JSON error codes we translate
UNKNOWN_GUILD = 10004
UNKNOWN_CHANNEL = 10003
UNKNOWN_WEBHOOK = 10015
MISSING_PERMISSIONS = 50013
MAX_WEBHOOKS = 30007


class DiscordLinkError(Exception):
    """Base error for the Discord link feature."""

    status_code: int = 500
    code: str = "DISCORD_ERROR"
    default_user_message: str = "Discord request failed"

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class NotConfiguredError(DiscordLinkError):
    """OAuth client or bot credentials are missing on this server."""

    status_code = 503
    code = "DISCORD_NOT_CONFIGURED"
    default_user_message = "Discord integration is not configured on this server"


class NotConnectedError(DiscordLinkError):
    status_code = 400
    code = "DISCORD_NOT_CONNECTED"
    default_user_message = "Discord is not connected"


class ReconnectRequiredError(DiscordLinkError):
    """Refresh token was rejected; only the user can fix this by relinking."""

    status_code = 401
    code = "DISCORD_EXPIRED"
    default_user_message = "Discord session expired - please reconnect"


class ForbiddenError(DiscordLinkError):
    status_code = 403
    code = "DISCORD_FORBIDDEN"
    default_user_message = "You do not have access to this server"


class NotFoundError(DiscordLinkError):
    status_code = 404
    code = "DISCORD_NOT_FOUND"
    default_user_message = "Not found"


class QuotaExceededError(DiscordLinkError):
    status_code = 400
    code = "DISCORD_WEBHOOK_LIMIT"
    default_user_message = "Maximum webhooks reached for this channel (Discord limit)"


class RemoteError(DiscordLinkError):
    """Non-success answer from Discord, passed through for diagnostics."""

    status_code = 502
    code = "DISCORD_REMOTE_ERROR"
    default_user_message = "Discord returned an error"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        remote_code: int | None = None,
        user_message: str | None = None,
    ) -> None:
        super().__init__(message, user_message=user_message)
        self.status = status
        self.remote_code = remote_code

    @property
    def is_permission_error(self) -> bool:
        return self.status == 403 or self.remote_code == MISSING_PERMISSIONS

    @property
    def is_not_found(self) -> bool:
        return self.status == 404 or self.remote_code in (
            UNKNOWN_CHANNEL,
            UNKNOWN_GUILD,
            UNKNOWN_WEBHOOK,
        )


class RemoteTransientError(RemoteError):
    """5xx or network failure. Safe for the caller to retry later."""

    status_code = 503
    code = "DISCORD_UNAVAILABLE"
    default_user_message = "Discord is temporarily unavailable - try again shortly"
