"""Rehost cog: rewrites messages that link to CDN files."""

import logging

import discord
from discord.ext import commands

from .pipeline import LinkRewritePipeline

log = logging.getLogger(__name__)


class RehostCog(commands.Cog):
    """Feeds every guild message through the link rewrite pipeline."""

    def __init__(self, bot: commands.Bot, pipeline: LinkRewritePipeline) -> None:
        self.bot = bot
        self.pipeline = pipeline

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if not self.pipeline.should_inspect(message):
            return
        log.debug("Saw message %s in guild %s", message.id, message.guild.id)

        try:
            await self.pipeline.run(message)
        except Exception:
            log.exception("Unexpected error handling message %s", message.id)


async def setup(bot: commands.Bot) -> None:
    pipeline = bot.pipeline  # type: ignore[attr-defined]
    await bot.add_cog(RehostCog(bot, pipeline))
