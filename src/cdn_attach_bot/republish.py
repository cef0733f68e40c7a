"""Swap a message for a webhook re-post that looks like it came from the author."""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any

import discord

from .errors import RepublishError
from .fetcher import StagedAsset

log = logging.getLogger(__name__)

WEBHOOK_NAME = "CDN Attach Bot Webhook"


class Republisher:
    """Owns one reusable webhook per channel and performs delete-then-repost."""

    def __init__(self, webhook_name: str = WEBHOOK_NAME) -> None:
        self.webhook_name = webhook_name
        # One entry per channel reposted in; dropped again by forget().
        self._webhooks: dict[int, discord.Webhook] = {}
        # Held only while a lookup is in flight.
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @staticmethod
    def _host_channel(channel: Any) -> Any:
        """Webhooks live on the parent of a thread."""
        if isinstance(channel, discord.Thread):
            if channel.parent is None:
                raise RepublishError(f"thread {channel.id} has no parent channel")
            return channel.parent
        return channel

    async def webhook_for(self, channel: Any) -> discord.Webhook:
        """Find this bot's webhook in ``channel`` or create it, at most once per channel."""
        host = self._host_channel(channel)
        lock = self._locks.get(host.id)
        if lock is None:
            lock = self._locks[host.id] = asyncio.Lock()
        async with lock:
            cached = self._webhooks.get(host.id)
            if cached is not None:
                return cached
            try:
                webhook = await self._find_or_create(host)
            except discord.HTTPException as e:
                raise RepublishError(f"cannot get webhook for channel {host.id}: {e}") from e
            self._webhooks[host.id] = webhook
            return webhook

    async def _find_or_create(self, host: Any) -> discord.Webhook:
        me = host.guild.me
        for webhook in await host.webhooks():
            owner = webhook.user
            if (
                webhook.name == self.webhook_name
                and webhook.token
                and owner is not None
                and me is not None
                and owner.id == me.id
            ):
                return webhook
        log.info("Creating webhook in channel %s", host.id)
        return await host.create_webhook(
            name=self.webhook_name, reason="Re-post CDN links as attachments"
        )

    def forget(self, channel: Any) -> None:
        self._webhooks.pop(self._host_channel(channel).id, None)

    async def republish(
        self, message: discord.Message, assets: list[StagedAsset], content: str
    ) -> bool:
        """Replace ``message`` with a re-post carrying ``assets``; no-op when empty.

        Raises:
            RepublishError: The webhook could not be obtained (message untouched)
                or the re-post failed (message may already be deleted).
        """
        if not assets:
            return False

        webhook = await self.webhook_for(message.channel)

        try:
            await message.delete()
        except discord.HTTPException as e:
            log.warning("Could not delete original message %s: %s", message.id, e)

        try:
            await self._send(webhook, message, assets, content)
        except discord.NotFound:
            log.info("Cached webhook for channel %s is gone, recreating", message.channel.id)
            self.forget(message.channel)
            webhook = await self.webhook_for(message.channel)
            try:
                await self._send(webhook, message, assets, content)
            except discord.HTTPException as e:
                raise RepublishError(f"re-post of message {message.id} failed: {e}") from e
        except discord.HTTPException as e:
            raise RepublishError(f"re-post of message {message.id} failed: {e}") from e

        log.info("Re-posted message %s with %d attachment(s)", message.id, len(assets))
        return True

    @staticmethod
    async def _send(
        webhook: discord.Webhook,
        message: discord.Message,
        assets: list[StagedAsset],
        content: str,
    ) -> None:
        kwargs: dict[str, Any] = {}
        if content:
            kwargs["content"] = content
        if isinstance(message.channel, discord.Thread):
            kwargs["thread"] = message.channel
        files = [discord.File(str(a.local_path), filename=a.filename) for a in assets]
        try:
            await webhook.send(
                username=message.author.display_name,
                avatar_url=message.author.display_avatar.url,
                files=files,
                allowed_mentions=discord.AllowedMentions.none(),
                **kwargs,
            )
        finally:
            for f in files:
                f.close()
