"""Services layer - Discord link business logic

Services are initialized with their dependencies and accessed through
dependency injection (see ``api.core.dependencies``).
"""

from .auth_service import AuthService
from .discord_api import DiscordAPIClient, OAuthTokens
from .discord_cache_service import DiscordResourceCache, group_by_category, is_stale
from .discord_http import DiscordCredential, DiscordRequestExecutor
from .discord_link_service import DisconnectResult, DiscordLinkService, OAuthStateStore
from .discord_permissions import PermissionFilter, has_manage_capability
from .discord_rate_limit import RateLimitBucket, RateLimitBucketStore
from .discord_token_service import DiscordTokenManager
from .webhook_provisioner import CleanupResult, WebhookProvisioner, WebhookSpec

__all__ = [
    "AuthService",
    "CleanupResult",
    "DisconnectResult",
    "DiscordAPIClient",
    "DiscordCredential",
    "DiscordLinkService",
    "DiscordRequestExecutor",
    "DiscordResourceCache",
    "DiscordTokenManager",
    "OAuthStateStore",
    "OAuthTokens",
    "PermissionFilter",
    "RateLimitBucket",
    "RateLimitBucketStore",
    "WebhookProvisioner",
    "WebhookSpec",
    "group_by_category",
    "has_manage_capability",
    "is_stale",
]
