import pytest
from unittest.mock import MagicMock, AsyncMock

import discord

from controllers.discord_effects import DiscordEffectHandler, disconnect_member

from tests.conftest import GUILD, USER, BLOCK_ROLE


def http_error():
    return discord.HTTPException(MagicMock(status=500, reason="Server Error"), "boom")


def make_member(role_ids=(), in_voice=True):
    member = MagicMock()
    member.id = int(USER)
    roles = []
    for role_id in role_ids:
        role = MagicMock()
        role.id = int(role_id)
        roles.append(role)
    member.roles = roles
    member.voice = MagicMock() if in_voice else None
    member.move_to = AsyncMock()
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    member.send = AsyncMock()
    return member


def make_handler(guild_configs, member):
    bot = MagicMock()
    bot.get_guild.return_value.get_member.return_value = member
    return DiscordEffectHandler(bot, guild_configs, block_hours=24)


@pytest.mark.asyncio
async def test_block_effects_assign_role_disconnect_and_notify(guild_configs):
    member = make_member()
    handler = make_handler(guild_configs, member)

    await handler.request_block_effects(GUILD, USER, 60)

    role = member.add_roles.await_args.args[0]
    assert role.id == int(BLOCK_ROLE)
    member.move_to.assert_awaited_once()
    assert "60 minute voice limit" in member.send.await_args.args[0]


@pytest.mark.asyncio
async def test_block_effects_continue_after_role_failure(guild_configs):
    member = make_member()
    member.add_roles.side_effect = http_error()
    handler = make_handler(guild_configs, member)

    await handler.request_block_effects(GUILD, USER, 60)

    member.move_to.assert_awaited_once()
    member.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_unblock_effects_remove_role_when_present(guild_configs):
    member = make_member(role_ids=(BLOCK_ROLE,))
    handler = make_handler(guild_configs, member)

    await handler.request_unblock_effects(GUILD, USER)

    member.remove_roles.assert_awaited_once()
    member.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_unblock_effects_skip_missing_role(guild_configs):
    member = make_member()
    handler = make_handler(guild_configs, member)

    await handler.request_unblock_effects(GUILD, USER)

    member.remove_roles.assert_not_called()


@pytest.mark.asyncio
async def test_missing_guild_is_ignored(guild_configs):
    bot = MagicMock()
    bot.get_guild.return_value = None
    handler = DiscordEffectHandler(bot, guild_configs)

    await handler.request_block_effects(GUILD, USER, 60)

    bot.get_guild.assert_called_once_with(int(GUILD))


@pytest.mark.asyncio
async def test_member_is_fetched_when_not_cached(guild_configs):
    member = make_member()
    bot = MagicMock()
    guild = bot.get_guild.return_value
    guild.get_member.return_value = None
    guild.fetch_member = AsyncMock(return_value=member)
    handler = DiscordEffectHandler(bot, guild_configs)

    assert await handler.fetch_member(GUILD, USER) is member
    guild.fetch_member.assert_awaited_once_with(int(USER))


@pytest.mark.asyncio
async def test_disconnect_member():
    assert await disconnect_member(make_member(in_voice=False)) is False

    member = make_member()
    member.move_to.side_effect = http_error()
    assert await disconnect_member(member) is False

    member = make_member()
    assert await disconnect_member(member) is True
    assert member.move_to.await_args.args == (None,)
