"""Tests for the policy slash commands."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cdn_attach_bot.cog_policy import PolicyCog, format_list
from cdn_attach_bot.policy_store import PolicyStore


def _interaction(*, guild_id: int | None = 1, manage: bool = True) -> MagicMock:
    interaction = MagicMock()
    interaction.guild_id = guild_id
    interaction.user.id = 77
    interaction.permissions.manage_guild = manage
    interaction.permissions.administrator = False
    interaction.response.send_message = AsyncMock()
    return interaction


def _reply(interaction: MagicMock) -> str:
    interaction.response.send_message.assert_awaited_once()
    args, kwargs = interaction.response.send_message.call_args
    assert kwargs["ephemeral"] is True
    return args[0]


@pytest.fixture()
def store(tmp_path: Path) -> PolicyStore:
    return PolicyStore(tmp_path / "policies.json", default_domains=["4cdn.org"])


@pytest.fixture()
def cog(store: PolicyStore) -> PolicyCog:
    return PolicyCog(MagicMock(), store)


class TestFormatList:
    def test_empty(self) -> None:
        assert format_list("Allowed domains", set()) == "**Allowed domains**: none"

    def test_sorted(self) -> None:
        text = format_list("Allowed extensions", {".png", ".gif"})
        assert text.endswith("`.gif`, `.png`")
        assert "(2)" in text


class TestDomainCommands:
    @pytest.mark.asyncio
    async def test_allow_domain_twice(self, cog: PolicyCog, store: PolicyStore) -> None:
        first = _interaction()
        await cog.allow_domain.callback(cog, first, "https://media.example.com/x")
        assert "Added" in _reply(first)

        second = _interaction()
        await cog.allow_domain.callback(cog, second, "media.example.com")
        assert "already" in _reply(second)

        assert store.policy_for(1).allowed_domains == {"4cdn.org", "media.example.com"}

    @pytest.mark.asyncio
    async def test_remove_absent_domain(self, cog: PolicyCog, store: PolicyStore) -> None:
        store.policy_for(1)
        interaction = _interaction()
        with patch.object(store, "save", wraps=store.save) as save:
            await cog.remove_domain.callback(cog, interaction, "example.com")
        assert "was not in the list" in _reply(interaction)
        save.assert_not_called()
        assert store.policy_for(1).allowed_domains == {"4cdn.org"}

    @pytest.mark.asyncio
    async def test_remove_domain(self, cog: PolicyCog, store: PolicyStore) -> None:
        interaction = _interaction()
        await cog.remove_domain.callback(cog, interaction, "4cdn.org")
        assert "Removed" in _reply(interaction)
        assert store.policy_for(1).allowed_domains == set()

    @pytest.mark.asyncio
    async def test_invalid_domain(self, cog: PolicyCog) -> None:
        interaction = _interaction()
        await cog.allow_domain.callback(cog, interaction, "not a domain")
        assert "not a valid domain" in _reply(interaction)

    @pytest.mark.asyncio
    async def test_list_domains(self, cog: PolicyCog) -> None:
        interaction = _interaction()
        await cog.list_domains.callback(cog, interaction)
        assert "`4cdn.org`" in _reply(interaction)


class TestExtensionCommands:
    @pytest.mark.asyncio
    async def test_allow_extension_normalised(self, cog: PolicyCog, store: PolicyStore) -> None:
        interaction = _interaction()
        await cog.allow_extension.callback(cog, interaction, "WEBP")
        assert "Added" in _reply(interaction)
        assert ".webp" in store.policy_for(1).allowed_extensions

    @pytest.mark.asyncio
    async def test_remove_extension(self, cog: PolicyCog, store: PolicyStore) -> None:
        interaction = _interaction()
        await cog.remove_extension.callback(cog, interaction, ".gif")
        assert "Removed" in _reply(interaction)
        assert ".gif" not in store.policy_for(1).allowed_extensions

    @pytest.mark.asyncio
    async def test_invalid_extension(self, cog: PolicyCog) -> None:
        interaction = _interaction()
        await cog.allow_extension.callback(cog, interaction, "tar.gz")
        assert "not a valid file extension" in _reply(interaction)

    @pytest.mark.asyncio
    async def test_list_extensions(self, cog: PolicyCog) -> None:
        interaction = _interaction()
        await cog.list_extensions.callback(cog, interaction)
        reply = _reply(interaction)
        for ext in (".jpg", ".jpeg", ".png", ".gif", ".webm", ".mp4"):
            assert f"`{ext}`" in reply


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_member_without_permission(self, cog: PolicyCog, store: PolicyStore) -> None:
        interaction = _interaction(manage=False)
        await cog.allow_domain.callback(cog, interaction, "example.com")
        assert _reply(interaction) == "Not authorized."
        assert "example.com" not in store.policy_for(1).allowed_domains

    @pytest.mark.asyncio
    async def test_outside_guild(self, cog: PolicyCog) -> None:
        interaction = _interaction(guild_id=None)
        await cog.list_domains.callback(cog, interaction)
        assert "only works in a server" in _reply(interaction)

    @pytest.mark.asyncio
    async def test_tenants_isolated(self, cog: PolicyCog, store: PolicyStore) -> None:
        await cog.allow_domain.callback(cog, _interaction(guild_id=1), "one.com")
        await cog.allow_domain.callback(cog, _interaction(guild_id=2), "two.com")
        assert "two.com" not in store.policy_for(1).allowed_domains
        assert "one.com" not in store.policy_for(2).allowed_domains
