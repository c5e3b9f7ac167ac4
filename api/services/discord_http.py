"""Rate-limit aware executor for Discord REST calls.

All outbound Discord traffic goes through ``DiscordRequestExecutor.execute``.
The executor waits out exhausted buckets, honours 429 retry-after, and
turns every non-success answer into a ``RemoteError``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from .discord_errors import RemoteError, RemoteTransientError
from .discord_rate_limit import RateLimitBucketStore, bucket_key_for

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
DEFAULT_RETRY_AFTER = 5.0

CredentialKind = Literal["bearer", "bot", "client"]
_AUTH_SCHEMES: dict[str, str] = {"bearer": "Bearer", "bot": "Bot", "client": "Basic"}


@dataclass(frozen=True)
class DiscordCredential:
    """Authorization for one call. Only the header differs between kinds."""

    kind: CredentialKind
    token: str

    def __post_init__(self) -> None:
        if self.kind not in _AUTH_SCHEMES:
            raise ValueError(f"Unknown credential kind: {self.kind!r}")

    @classmethod
    def bearer(cls, access_token: str) -> DiscordCredential:
        return cls("bearer", access_token)

    @classmethod
    def bot(cls, bot_token: str) -> DiscordCredential:
        return cls("bot", bot_token)

    @classmethod
    def client(cls, client_id: str, client_secret: str) -> DiscordCredential:
        raw = f"{client_id}:{client_secret}".encode()
        return cls("client", base64.b64encode(raw).decode())

    @property
    def header(self) -> str:
        return f"{_AUTH_SCHEMES[self.kind]} {self.token}"

    def __repr__(self) -> str:
        return f"DiscordCredential(kind={self.kind!r})"


def _parse_retry_after(response: httpx.Response, default: float) -> float:
    raw = response.headers.get("Retry-After")
    if raw is None:
        try:
            raw = response.json().get("retry_after")
        except (ValueError, AttributeError):
            raw = None
    if raw is None:
        return default
    try:
        return max(float(raw), 0.0)
    except (TypeError, ValueError):
        return default


def _error_from_response(response: httpx.Response, method: str, key: str) -> RemoteError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    status = response.status_code
    remote_code = body.get("code")
    message = body.get("message") or f"Discord API error: {status}"
    detail = f"{method} {key} -> {status} (code={remote_code}): {message}"

    if status >= 500:
        return RemoteTransientError(detail, status=status, remote_code=remote_code)
    return RemoteError(detail, status=status, remote_code=remote_code)


class DiscordRequestExecutor:
    """Issues Discord HTTP calls against a shared bucket store.

    One instance owns one ``httpx.AsyncClient``; the bucket store is
    injected so several executors (or a replacement store) can share it.
    """

    def __init__(
        self,
        buckets: RateLimitBucketStore,
        *,
        base_url: str = DISCORD_API_BASE,
        timeout: float = 10.0,
        default_retry_after: float = DEFAULT_RETRY_AFTER,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.buckets = buckets
        self.default_retry_after = default_retry_after
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    async def execute(
        self,
        credential: DiscordCredential | None,
        route: str,
        method: str = "GET",
        *,
        json: Any = None,
        form: dict[str, str] | None = None,
    ) -> Any:
        """Send one request; return parsed JSON, or None for empty bodies.

        Raises ``RemoteTransientError`` on 5xx/timeouts and ``RemoteError``
        for every other non-success status except 429, which is waited out
        and retried.
        """
        key = bucket_key_for(route)

        wait = self.buckets.wait_time(key)
        if wait > 0:
            logger.debug(f"Rate limited on {key}, waiting {wait:.2f}s")
            await asyncio.sleep(wait)

        headers: dict[str, str] = {}
        if credential is not None:
            headers["Authorization"] = credential.header

        try:
            response = await self._http.request(
                method, route, json=json, data=form, headers=headers
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout on Discord {method} {key}")
            raise RemoteTransientError(f"Timeout on {method} {key}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Network error on Discord {method} {key}: {type(e).__name__}")
            raise RemoteTransientError(f"{type(e).__name__} on {method} {key}") from e

        self.buckets.update_from_headers(key, response.headers)

        if response.status_code == 429:
            retry_after = _parse_retry_after(response, self.default_retry_after)
            logger.warning(f"Discord rate limit hit on {key}, retrying after {retry_after}s")
            await asyncio.sleep(retry_after)
            return await self.execute(credential, route, method, json=json, form=form)

        if not response.is_success:
            error = _error_from_response(response, method, key)
            logger.error(f"Discord API error: {error}")
            raise error

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(
                f"Non-JSON success response for {method} {key}", status=response.status_code
            ) from e
