"""Guild permission checks.

Discord sends permissions as a decimal string holding an unsigned 64-bit
mask. Anything that is not such a value is treated as "no permission".
"""

from __future__ import annotations

from typing import Any, Protocol

ADMINISTRATOR = 1 << 3
MANAGE_WEBHOOKS = 1 << 29

_UINT64_LIMIT = 1 << 64


def parse_permission_mask(value: Any) -> int | None:
    """Return the mask as an int in [0, 2**64), or None if malformed."""
    if value is None or isinstance(value, (bool, float)):
        return None
    if isinstance(value, int):
        mask = value
    elif isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            return None
        mask = int(text)
    else:
        return None
    if not 0 <= mask < _UINT64_LIMIT:
        return None
    return mask


def has_manage_capability(permissions: Any) -> bool:
    """True if the mask grants ADMINISTRATOR or MANAGE_WEBHOOKS. Never raises."""
    mask = parse_permission_mask(permissions)
    if mask is None:
        return False
    return bool(mask & ADMINISTRATOR) or bool(mask & MANAGE_WEBHOOKS)


class _GuildLookup(Protocol):
    async def get_guild(self, account_id: str, guild_id: str) -> Any: ...


class PermissionFilter:
    """Answers access questions from the cached guild snapshot.

    The cache only holds guilds that passed ``has_manage_capability`` at
    the last refresh, so a hit is the whole check. Callers needing live
    truth must refresh the guild cache first.
    """

    def __init__(self, cache_repo: _GuildLookup) -> None:
        self.cache_repo = cache_repo

    async def user_has_guild_access(self, account_id: str, guild_id: str) -> bool:
        guild = await self.cache_repo.get_guild(account_id, guild_id)
        return guild is not None
