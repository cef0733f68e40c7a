"""Permission checks for the policy commands."""

import discord


def can_manage_policy(interaction: discord.Interaction) -> bool:
    """Only members who can manage the server may change its allow-lists."""
    if interaction.guild_id is None:
        return False
    perms = interaction.permissions
    return perms.manage_guild or perms.administrator
