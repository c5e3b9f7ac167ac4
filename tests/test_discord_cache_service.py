"""Guild/channel cache: filtering, staleness and concurrent refreshes."""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from api.services.discord_api import DiscordAPIClient
from api.services.discord_cache_service import DiscordResourceCache, group_by_category, is_stale
from api.services.discord_errors import (
    ForbiddenError,
    NotConfiguredError,
    NotConnectedError,
    RemoteError,
)
from tests.conftest import ACCOUNT_ID, guild_payload, seed_guild

GUILDS = [
    guild_payload("1", "Webhook Managers", str(1 << 29)),
    guild_payload("2", "Admins Only", "8"),
    guild_payload("3", "Plain Members", str(1 << 11)),
    guild_payload("4", "Broken Mask", "lots"),
]

CHANNELS = [
    {"id": "10", "type": 4, "name": "Streams", "position": 0},
    {"id": "11", "type": 0, "name": "live-alerts", "position": 1, "parent_id": "10"},
    {"id": "12", "type": 5, "name": "announcements", "position": 2, "parent_id": None},
    {"id": "13", "type": 2, "name": "Voice", "position": 3, "parent_id": "10"},
    {"id": "14", "type": 15, "name": "forum", "position": 4},
]


class TestIsStale:
    def test_missing_snapshot_is_stale(self):
        assert is_stale(None, datetime.now(UTC), timedelta(minutes=5))

    def test_window_boundary(self):
        now = datetime(2024, 1, 1, tzinfo=UTC)
        window = timedelta(minutes=5)
        assert not is_stale(now - window, now, window)
        assert is_stale(now - window - timedelta(seconds=1), now, window)


class TestListGuilds:
    async def test_refresh_keeps_only_manageable_guilds(self, resource_cache, linked, discord):
        discord.route("GET", "/users/@me/guilds", httpx.Response(200, json=GUILDS))

        guilds = await resource_cache.list_guilds(ACCOUNT_ID)

        assert sorted(g.guild_id for g in guilds) == ["1", "2"]
        call = discord.calls("GET", "/users/@me/guilds")[0]
        assert call.headers["Authorization"] == "Bearer access-old"

    async def test_guild_without_id_is_skipped(self, resource_cache, linked, discord):
        payload = [{"name": "Ghost", "permissions": "8"}, guild_payload("2", "Admins Only", "8")]
        discord.route("GET", "/users/@me/guilds", httpx.Response(200, json=payload))

        guilds = await resource_cache.list_guilds(ACCOUNT_ID)

        assert [g.guild_id for g in guilds] == ["2"]

    async def test_refresh_is_idempotent(self, resource_cache, linked, discord, store):
        discord.route("GET", "/users/@me/guilds", httpx.Response(200, json=GUILDS))

        await resource_cache.list_guilds(ACCOUNT_ID, force_refresh=True)
        first = [(g.guild_id, g.name) for g in store.guilds[ACCOUNT_ID]]
        await resource_cache.list_guilds(ACCOUNT_ID, force_refresh=True)
        second = [(g.guild_id, g.name) for g in store.guilds[ACCOUNT_ID]]

        assert first == second
        assert len(second) == 2

    async def test_fresh_cache_served_without_network(self, resource_cache, linked, discord, store):
        seed_guild(store, "g1")
        guilds = await resource_cache.list_guilds(ACCOUNT_ID)
        assert [g.guild_id for g in guilds] == ["g1"]
        assert discord.requests == []

    async def test_stale_cache_is_refetched(self, resource_cache, linked, discord, store):
        seed_guild(store, "g1").cached_at = datetime.now(UTC) - timedelta(minutes=6)
        discord.route("GET", "/users/@me/guilds", httpx.Response(200, json=GUILDS))

        guilds = await resource_cache.list_guilds(ACCOUNT_ID)

        assert sorted(g.guild_id for g in guilds) == ["1", "2"]
        assert len(discord.calls("GET", "/users/@me/guilds")) == 1

    async def test_guild_dropped_remotely_disappears(self, resource_cache, linked, discord, store):
        seed_guild(store, "1")
        discord.route("GET", "/users/@me/guilds", httpx.Response(200, json=GUILDS[1:]))
        guilds = await resource_cache.list_guilds(ACCOUNT_ID, force_refresh=True)
        assert [g.guild_id for g in guilds] == ["2"]

    async def test_requires_connection(self, resource_cache, discord):
        with pytest.raises(NotConnectedError):
            await resource_cache.list_guilds(ACCOUNT_ID)
        assert discord.requests == []

    async def test_concurrent_refreshes_leave_one_copy(
        self, resource_cache, linked, discord, store
    ):
        discord.route("GET", "/users/@me/guilds", httpx.Response(200, json=GUILDS))

        await asyncio.gather(
            *(resource_cache.list_guilds(ACCOUNT_ID, force_refresh=True) for _ in range(5))
        )

        ids = [g.guild_id for g in store.guilds[ACCOUNT_ID]]
        assert sorted(ids) == ["1", "2"]

    async def test_locks_shared_between_instances(
        self, cache_repo, token_manager, discord_api, linked, discord, store
    ):
        locks: dict = {}
        caches = [
            DiscordResourceCache(cache_repo, token_manager, discord_api, scope_locks=locks)
            for _ in range(3)
        ]
        discord.route("GET", "/users/@me/guilds", httpx.Response(200, json=GUILDS))

        await asyncio.gather(*(c.refresh_guilds(ACCOUNT_ID) for c in caches))

        assert len(store.guilds[ACCOUNT_ID]) == 2


class TestListChannels:
    async def test_filters_types_and_resolves_categories(
        self, resource_cache, linked, discord, store
    ):
        seed_guild(store, "g1")
        discord.route("GET", "/guilds/g1/channels", httpx.Response(200, json=CHANNELS))

        channels = await resource_cache.list_channels(ACCOUNT_ID, "g1")

        assert [(c.channel_id, c.type) for c in channels] == [("11", 0), ("12", 5)]
        assert channels[0].parent_name == "Streams"
        assert channels[1].parent_id is None
        call = discord.calls("GET", "/guilds/g1/channels")[0]
        assert call.headers["Authorization"] == "Bot bot-token"

    async def test_channel_without_id_is_skipped(self, resource_cache, linked, discord, store):
        seed_guild(store, "g1")
        payload = [{"type": 0, "name": "ghost"}, {"type": 4, "name": "no-id category"}, *CHANNELS]
        discord.route("GET", "/guilds/g1/channels", httpx.Response(200, json=payload))

        channels = await resource_cache.list_channels(ACCOUNT_ID, "g1")

        assert [c.channel_id for c in channels] == ["11", "12"]

    async def test_unknown_guild_is_forbidden(self, resource_cache, linked, discord):
        with pytest.raises(ForbiddenError):
            await resource_cache.list_channels(ACCOUNT_ID, "g1")
        assert discord.requests == []

    async def test_bot_not_in_guild(self, resource_cache, linked, discord, store):
        seed_guild(store, "g1")
        discord.route(
            "GET",
            "/guilds/g1/channels",
            httpx.Response(403, json={"message": "Missing Access", "code": 50001}),
        )
        with pytest.raises(ForbiddenError) as exc_info:
            await resource_cache.list_channels(ACCOUNT_ID, "g1")
        assert "invite the bot" in exc_info.value.user_message

    async def test_other_remote_errors_pass_through(self, resource_cache, linked, discord, store):
        seed_guild(store, "g1")
        discord.route("GET", "/guilds/g1/channels", httpx.Response(400, json={"code": 50035}))
        with pytest.raises(RemoteError) as exc_info:
            await resource_cache.list_channels(ACCOUNT_ID, "g1")
        assert exc_info.value.remote_code == 50035

    async def test_bot_token_required(self, cache_repo, token_manager, executor, linked, store):
        seed_guild(store, "g1")
        no_bot = DiscordAPIClient(
            executor, client_id="id", client_secret="secret", redirect_uri="http://x/cb"
        )
        cache = DiscordResourceCache(cache_repo, token_manager, no_bot)
        with pytest.raises(NotConfiguredError):
            await cache.list_channels(ACCOUNT_ID, "g1")

    async def test_fresh_channels_served_from_cache(self, resource_cache, linked, discord, store):
        seed_guild(store, "g1")
        discord.route("GET", "/guilds/g1/channels", httpx.Response(200, json=CHANNELS))

        await resource_cache.list_channels(ACCOUNT_ID, "g1")
        await resource_cache.list_channels(ACCOUNT_ID, "g1")
        assert len(discord.calls("GET", "/guilds/g1/channels")) == 1

        await resource_cache.list_channels(ACCOUNT_ID, "g1", force_refresh=True)
        assert len(discord.calls("GET", "/guilds/g1/channels")) == 2

    async def test_concurrent_channel_refreshes(self, resource_cache, linked, discord, store):
        seed_guild(store, "g1")
        discord.route("GET", "/guilds/g1/channels", httpx.Response(200, json=CHANNELS))

        await asyncio.gather(
            *(resource_cache.list_channels(ACCOUNT_ID, "g1", force_refresh=True) for _ in range(4))
        )
        assert len(store.channels[(ACCOUNT_ID, "g1")]) == 2


class TestGroupByCategory:
    async def test_grouping(self, resource_cache, linked, discord, store):
        seed_guild(store, "g1")
        discord.route("GET", "/guilds/g1/channels", httpx.Response(200, json=CHANNELS))
        channels = await resource_cache.list_channels(ACCOUNT_ID, "g1")

        grouped = group_by_category(channels)

        assert [g["name"] for g in grouped["categorized"]] == ["Streams"]
        assert [c.channel_id for c in grouped["categorized"][0]["channels"]] == ["11"]
        assert [c.channel_id for c in grouped["uncategorized"]] == ["12"]
