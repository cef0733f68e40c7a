"""Policy cog: /allow-domain, /remove-domain, /list-domains and the extension variants."""

import logging
from collections.abc import Callable

import discord
from discord import app_commands
from discord.ext import commands

from .policy_store import PolicyDocument, PolicyStore
from .security import can_manage_policy

log = logging.getLogger(__name__)

Mutation = Callable[[PolicyDocument, int, str], bool]


def format_list(title: str, values: set[str]) -> str:
    if not values:
        return f"**{title}**: none"
    return f"**{title}** ({len(values)})\n" + ", ".join(f"`{v}`" for v in sorted(values))


class PolicyCog(commands.Cog):
    """Slash commands for managing a server's allowed domains and extensions."""

    def __init__(self, bot: commands.Bot, store: PolicyStore) -> None:
        self.bot = bot
        self.store = store

    async def _reply(self, interaction: discord.Interaction, text: str) -> None:
        await interaction.response.send_message(text, ephemeral=True)

    async def _authorize(self, interaction: discord.Interaction) -> bool:
        if interaction.guild_id is None:
            await self._reply(interaction, "This command only works in a server.")
            return False
        if not can_manage_policy(interaction):
            await self._reply(interaction, "Not authorized.")
            return False
        return True

    async def _mutate(
        self,
        interaction: discord.Interaction,
        mutation: Mutation,
        value: str,
        *,
        kind: str,
        changed_msg: str,
        unchanged_msg: str,
    ) -> None:
        if not await self._authorize(interaction):
            return
        guild_id = interaction.guild_id
        try:
            with self.store.transaction() as doc:
                changed = mutation(doc, guild_id, value)
        except ValueError:
            await self._reply(interaction, f"`{value}` is not a valid {kind}.")
            return
        log.info(
            "Guild %s: %s %s (%s) by %s",
            guild_id,
            mutation.__name__,
            value,
            "changed" if changed else "no-op",
            interaction.user.id,
        )
        await self._reply(interaction, (changed_msg if changed else unchanged_msg).format(value))

    # ── Domains ────────────────────────────────────────────────────

    @app_commands.command(name="allow-domain", description="Allow links from a domain")
    @app_commands.describe(domain="Root domain or full host, e.g. 4cdn.org")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def allow_domain(self, interaction: discord.Interaction, domain: str) -> None:
        await self._mutate(
            interaction,
            self.store.add_domain,
            domain,
            kind="domain",
            changed_msg="Added `{}` to the allowed domains.",
            unchanged_msg="`{}` is already in the list.",
        )

    @app_commands.command(name="remove-domain", description="Stop allowing a domain")
    @app_commands.describe(domain="Domain to remove")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def remove_domain(self, interaction: discord.Interaction, domain: str) -> None:
        await self._mutate(
            interaction,
            self.store.remove_domain,
            domain,
            kind="domain",
            changed_msg="Removed `{}` from the allowed domains.",
            unchanged_msg="`{}` was not in the list.",
        )

    @app_commands.command(name="list-domains", description="Show allowed domains")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def list_domains(self, interaction: discord.Interaction) -> None:
        if not await self._authorize(interaction):
            return
        policy = self.store.policy_for(interaction.guild_id)
        await self._reply(interaction, format_list("Allowed domains", policy.allowed_domains))

    # ── Extensions ─────────────────────────────────────────────────

    @app_commands.command(name="allow-extension", description="Allow a file extension")
    @app_commands.describe(extension="Extension with or without the dot, e.g. webp")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def allow_extension(self, interaction: discord.Interaction, extension: str) -> None:
        await self._mutate(
            interaction,
            self.store.add_extension,
            extension,
            kind="file extension",
            changed_msg="Added `{}` to the allowed extensions.",
            unchanged_msg="`{}` is already in the list.",
        )

    @app_commands.command(name="remove-extension", description="Stop allowing a file extension")
    @app_commands.describe(extension="Extension to remove")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def remove_extension(self, interaction: discord.Interaction, extension: str) -> None:
        await self._mutate(
            interaction,
            self.store.remove_extension,
            extension,
            kind="file extension",
            changed_msg="Removed `{}` from the allowed extensions.",
            unchanged_msg="`{}` was not in the list.",
        )

    @app_commands.command(name="list-extensions", description="Show allowed file extensions")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def list_extensions(self, interaction: discord.Interaction) -> None:
        if not await self._authorize(interaction):
            return
        policy = self.store.policy_for(interaction.guild_id)
        await self._reply(
            interaction, format_list("Allowed extensions", policy.allowed_extensions)
        )


async def setup(bot: commands.Bot) -> None:
    store = bot.store  # type: ignore[attr-defined]
    await bot.add_cog(PolicyCog(bot, store))
