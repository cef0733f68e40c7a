"""CdnAttachBot: commands.Bot subclass with shared state."""

import logging

import aiohttp
import discord
from discord.ext import commands

from .config import Config
from .fetcher import Fetcher
from .link_scanner import ANY_URL_PATTERN, build_domain_pattern
from .pipeline import LinkRewritePipeline
from .policy_store import PolicyStore
from .republish import Republisher

log = logging.getLogger(__name__)


class CdnAttachBot(commands.Bot):
    """Discord bot that re-hosts CDN links as attachments on a webhook re-post."""

    def __init__(self, config: Config) -> None:
        intents = discord.Intents.default()
        intents.message_content = True

        super().__init__(command_prefix=commands.when_mentioned, intents=intents)

        self.config = config
        self.store = PolicyStore(config.policy_path, default_domains=config.cdn_domains)
        self.republisher = Republisher()
        self.http_session: aiohttp.ClientSession | None = None
        self.pipeline: LinkRewritePipeline | None = None

    async def setup_hook(self) -> None:
        self.http_session = aiohttp.ClientSession()
        fetcher = Fetcher(
            self.http_session,
            max_bytes=self.config.max_file_size,
            timeout_secs=self.config.fetch_timeout_secs,
        )
        if self.config.uses_policy:
            pattern = ANY_URL_PATTERN
            store: PolicyStore | None = self.store
        else:
            pattern = build_domain_pattern(self.config.cdn_domains)
            store = None
        self.pipeline = LinkRewritePipeline(
            pattern=pattern,
            fetcher=fetcher,
            republisher=self.republisher,
            staging_dir=self.config.staging_dir,
            store=store,
            cdn_domains=self.config.cdn_domains,
        )

        await self.load_extension("cdn_attach_bot.cog_rehost")
        if self.config.uses_policy:
            self.store.load()
            await self.load_extension("cdn_attach_bot.cog_policy")

        if self.config.guild_id is not None:
            guild = discord.Object(id=self.config.guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            log.info("Slash commands synced to guild %s.", self.config.guild_id)
        else:
            await self.tree.sync()
            log.info("Slash commands synced globally.")

    async def on_ready(self) -> None:
        log.info("Logged in as %s (ID: %s)", self.user, self.user.id if self.user else "?")
        log.info("Link mode: %s", self.config.link_mode)
        log.info("CDN domains: %s", ", ".join(self.config.cdn_domains))
        log.info("Staging dir: %s", self.config.staging_dir)

    async def close(self) -> None:
        if self.http_session is not None:
            await self.http_session.close()
        await super().close()
