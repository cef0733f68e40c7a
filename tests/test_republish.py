"""Tests for republish module."""

import asyncio
import gc
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from cdn_attach_bot.errors import RepublishError
from cdn_attach_bot.fetcher import StagedAsset
from cdn_attach_bot.republish import WEBHOOK_NAME, Republisher

from fakes import make_message

BOT_ID = 42


def _http_error(cls: type[discord.HTTPException], status: int) -> discord.HTTPException:
    return cls(MagicMock(status=status, reason="err"), "failed")


def _webhook(name: str = WEBHOOK_NAME, owner_id: int = BOT_ID, token: str | None = "tok") -> MagicMock:
    webhook = MagicMock()
    webhook.name = name
    webhook.token = token
    webhook.user.id = owner_id
    webhook.send = AsyncMock()
    return webhook


def _channel(existing: list[MagicMock] | None = None, created: MagicMock | None = None) -> MagicMock:
    channel = MagicMock()
    channel.id = 900
    channel.guild.me.id = BOT_ID
    channel.webhooks = AsyncMock(return_value=existing or [])
    channel.create_webhook = AsyncMock(return_value=created or _webhook())
    return channel


def _asset(tmp_path: Path, name: str = "1234.jpg") -> StagedAsset:
    path = tmp_path / f"cdn_{name}"
    path.write_bytes(b"img")
    return StagedAsset(
        source_url=f"https://i.4cdn.org/b/{name}", local_path=path, size_bytes=3, filename=name
    )


class TestWebhookFor:
    @pytest.mark.asyncio
    async def test_reuses_existing(self) -> None:
        hook = _webhook()
        channel = _channel(existing=[_webhook(name="other"), hook])
        assert await Republisher().webhook_for(channel) is hook
        channel.create_webhook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignores_foreign_webhooks(self) -> None:
        created = _webhook()
        channel = _channel(existing=[_webhook(owner_id=7), _webhook(token=None)], created=created)
        assert await Republisher().webhook_for(channel) is created
        channel.create_webhook.assert_awaited_once()
        assert channel.create_webhook.call_args.kwargs["name"] == WEBHOOK_NAME

    @pytest.mark.asyncio
    async def test_cached_per_channel(self) -> None:
        channel = _channel()
        republisher = Republisher()
        first = await republisher.webhook_for(channel)
        second = await republisher.webhook_for(channel)
        assert first is second
        channel.webhooks.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one(self) -> None:
        channel = _channel()
        republisher = Republisher()
        results = await asyncio.gather(*(republisher.webhook_for(channel) for _ in range(5)))
        assert len({id(r) for r in results}) == 1
        channel.create_webhook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_channel_locks_not_retained(self) -> None:
        republisher = Republisher()
        for channel_id in range(3):
            channel = _channel()
            channel.id = channel_id
            await republisher.webhook_for(channel)
        gc.collect()
        assert len(republisher._locks) == 0
        assert len(republisher._webhooks) == 3

    @pytest.mark.asyncio
    async def test_http_failure_raises(self) -> None:
        channel = _channel()
        channel.webhooks.side_effect = _http_error(discord.Forbidden, 403)
        with pytest.raises(RepublishError):
            await Republisher().webhook_for(channel)


class TestRepublish:
    @pytest.mark.asyncio
    async def test_no_assets_is_noop(self) -> None:
        message = make_message("hi")
        assert await Republisher().republish(message, [], "hi") is False
        message.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deletes_and_reposts(self, tmp_path: Path) -> None:
        hook = _webhook()
        message = make_message("look at this https://i.4cdn.org/b/1234.jpg")
        message.channel = _channel(existing=[hook])

        assert await Republisher().republish(message, [_asset(tmp_path)], "look at this")

        message.delete.assert_awaited_once()
        kwargs = hook.send.call_args.kwargs
        assert kwargs["content"] == "look at this"
        assert kwargs["username"] == "anon"
        assert kwargs["avatar_url"] == "https://cdn.discordapp.com/avatars/1/a.png"
        assert [f.filename for f in kwargs["files"]] == ["1234.jpg"]
        mentions = kwargs["allowed_mentions"]
        assert mentions.everyone is False
        assert mentions.users is False
        assert mentions.roles is False
        assert "thread" not in kwargs

    @pytest.mark.asyncio
    async def test_empty_content_omitted(self, tmp_path: Path) -> None:
        hook = _webhook()
        message = make_message("https://i.4cdn.org/b/1234.jpg")
        message.channel = _channel(existing=[hook])
        await Republisher().republish(message, [_asset(tmp_path)], "")
        assert "content" not in hook.send.call_args.kwargs

    @pytest.mark.asyncio
    async def test_delete_failure_still_reposts(self, tmp_path: Path) -> None:
        hook = _webhook()
        message = make_message("x")
        message.channel = _channel(existing=[hook])
        message.delete.side_effect = _http_error(discord.Forbidden, 403)

        assert await Republisher().republish(message, [_asset(tmp_path)], "x")
        hook.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_webhook_failure_leaves_message(self, tmp_path: Path) -> None:
        message = make_message("x")
        message.channel = _channel()
        message.channel.webhooks.side_effect = _http_error(discord.Forbidden, 403)

        with pytest.raises(RepublishError):
            await Republisher().republish(message, [_asset(tmp_path)], "x")
        message.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_raises(self, tmp_path: Path) -> None:
        hook = _webhook()
        hook.send.side_effect = _http_error(discord.HTTPException, 500)
        message = make_message("x")
        message.channel = _channel(existing=[hook])

        with pytest.raises(RepublishError):
            await Republisher().republish(message, [_asset(tmp_path)], "x")

    @pytest.mark.asyncio
    async def test_vanished_webhook_recreated(self, tmp_path: Path) -> None:
        stale = _webhook()
        stale.send.side_effect = _http_error(discord.NotFound, 404)
        fresh = _webhook()
        message = make_message("x")
        message.channel = _channel(created=fresh)
        message.channel.webhooks.side_effect = [[stale], []]
        republisher = Republisher()

        assert await republisher.republish(message, [_asset(tmp_path)], "x")
        fresh.send.assert_awaited_once()
        message.channel.create_webhook.assert_awaited_once()
        assert await republisher.webhook_for(message.channel) is fresh

    @pytest.mark.asyncio
    async def test_files_closed_after_send(self, tmp_path: Path) -> None:
        hook = _webhook()
        message = make_message("x")
        message.channel = _channel(existing=[hook])
        await Republisher().republish(message, [_asset(tmp_path)], "x")
        for f in hook.send.call_args.kwargs["files"]:
            assert f.fp.closed
