import unittest
from unittest.mock import AsyncMock, MagicMock

import discord

from cogs.leaderboard.leaderboard_config import LeaderboardKind
from cogs.leaderboard.publisher import LeaderboardPublisher, PublishResult
from cogs.leaderboard.store import LeaderboardConfig

GUILD = 111
CHANNEL = 555


def http_error(cls, status):
    return cls(MagicMock(status=status, reason="error"), "error")


class LeaderboardPublisherTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.message = MagicMock()
        self.message.edit = AsyncMock()

        self.channel = MagicMock(spec=discord.TextChannel)
        self.channel.id = CHANNEL
        self.channel.fetch_message = AsyncMock(return_value=self.message)
        self.channel.send = AsyncMock(return_value=MagicMock(id=999))

        self.bot = MagicMock()
        self.bot.get_channel.return_value = self.channel
        self.bot.fetch_channel = AsyncMock(return_value=self.channel)

        self.config_store = MagicMock()
        self.config_store.set_message_id = AsyncMock()

        self.publisher = LeaderboardPublisher(self.bot, self.config_store)
        self.embed = discord.Embed(title="test")

    def config(self, **changes):
        return LeaderboardConfig(GUILD, LeaderboardKind.MESSAGE, CHANNEL, **changes)

    async def test_sends_and_persists_when_no_message_yet(self):
        config = self.config()
        result = await self.publisher.publish(config, self.embed)

        self.assertIs(result, PublishResult.SENT)
        self.channel.send.assert_awaited_once_with(embed=self.embed)
        self.config_store.set_message_id.assert_awaited_once_with(GUILD, LeaderboardKind.MESSAGE, 999)
        self.assertEqual(config.message_id, 999)

    async def test_edits_existing_message(self):
        result = await self.publisher.publish(self.config(message_id=42), self.embed)

        self.assertIs(result, PublishResult.EDITED)
        self.channel.fetch_message.assert_awaited_once_with(42)
        self.message.edit.assert_awaited_once_with(embed=self.embed)
        self.channel.send.assert_not_awaited()

    async def test_deleted_message_is_replaced(self):
        self.channel.fetch_message.side_effect = http_error(discord.NotFound, 404)

        result = await self.publisher.publish(self.config(message_id=42), self.embed)

        self.assertIs(result, PublishResult.SENT)
        self.config_store.set_message_id.assert_awaited_once_with(GUILD, LeaderboardKind.MESSAGE, 999)

    async def test_edit_failure_does_not_resend(self):
        self.message.edit.side_effect = http_error(discord.HTTPException, 500)

        result = await self.publisher.publish(self.config(message_id=42), self.embed)

        self.assertIs(result, PublishResult.FAILED)
        self.channel.send.assert_not_awaited()

    async def test_send_failure(self):
        self.channel.send.side_effect = http_error(discord.Forbidden, 403)

        result = await self.publisher.publish(self.config(), self.embed)

        self.assertIs(result, PublishResult.FAILED)
        self.config_store.set_message_id.assert_not_awaited()

    async def test_unresolvable_channel(self):
        self.bot.get_channel.return_value = None
        self.bot.fetch_channel.side_effect = http_error(discord.NotFound, 404)

        result = await self.publisher.publish(self.config(message_id=42), self.embed)

        self.assertIs(result, PublishResult.FAILED)
        self.assertFalse(result.ok)

    async def test_channel_fetched_when_not_cached(self):
        self.bot.get_channel.return_value = None

        channel = await self.publisher.resolve_channel(CHANNEL)

        self.assertIs(channel, self.channel)
        self.bot.fetch_channel.assert_awaited_once_with(CHANNEL)

    async def test_non_messageable_channel(self):
        self.bot.get_channel.return_value = MagicMock(spec=discord.CategoryChannel)
        self.assertIsNone(await self.publisher.resolve_channel(CHANNEL))

    async def test_edit_timer(self):
        self.assertTrue(await self.publisher.edit_timer(self.config(timer_message_id=7), "⏳ soon"))
        self.channel.fetch_message.assert_awaited_once_with(7)
        self.message.edit.assert_awaited_once_with(content="⏳ soon")

        self.assertFalse(await self.publisher.edit_timer(self.config(), "⏳ soon"))

    async def test_edit_timer_deleted(self):
        self.channel.fetch_message.side_effect = http_error(discord.NotFound, 404)
        self.assertFalse(await self.publisher.edit_timer(self.config(timer_message_id=7), "⏳ soon"))


if __name__ == '__main__':
    unittest.main()
