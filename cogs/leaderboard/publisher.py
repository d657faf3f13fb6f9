"""
Leaderboard Publisher
=====================
Edit-or-send of the live leaderboard message and the countdown announcement.
Platform errors are caught and logged here; callers get an explicit result.
"""

import logging
from enum import Enum
from typing import Optional

import discord

from .store import LeaderboardConfig, LeaderboardConfigStore

logger = logging.getLogger('discord.bot.leaderboard.publisher')


class PublishResult(Enum):
    EDITED = "edited"
    SENT = "sent"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is not PublishResult.FAILED


class LeaderboardPublisher:

    def __init__(self, bot, config_store: LeaderboardConfigStore):
        self.bot = bot
        self.config_store = config_store

    async def resolve_channel(self, channel_id: Optional[int]):
        """Cached channel first, then an API fetch. None if it cannot receive messages."""
        if channel_id is None:
            return None

        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except (discord.NotFound, discord.Forbidden) as e:
                logger.warning(f"Channel {channel_id} unavailable: {e}")
                return None
            except discord.HTTPException as e:
                logger.error(f"Failed to fetch channel {channel_id}: {e}")
                return None

        if not isinstance(channel, discord.abc.Messageable):
            logger.warning(f"Channel {channel_id} is not messageable")
            return None
        return channel

    async def publish(self, config: LeaderboardConfig, embed: discord.Embed) -> PublishResult:
        channel = await self.resolve_channel(config.channel_id)
        if channel is None:
            return PublishResult.FAILED

        if config.message_id:
            try:
                message = await channel.fetch_message(config.message_id)
            except discord.NotFound:
                # Deleted by someone; a fresh message replaces it below
                logger.info(
                    f"Leaderboard message {config.message_id} for guild {config.guild_id} "
                    f"({config.kind.value}) was deleted, sending a new one"
                )
                message = None
            except discord.HTTPException as e:
                logger.error(f"Failed to fetch leaderboard message {config.message_id}: {e}")
                return PublishResult.FAILED

            if message is not None:
                try:
                    await message.edit(embed=embed)
                    return PublishResult.EDITED
                except discord.HTTPException as e:
                    logger.error(f"Failed to edit leaderboard message {config.message_id}: {e}")
                    return PublishResult.FAILED

        message = await self.send_embed(channel, embed)
        if message is None:
            return PublishResult.FAILED

        await self.config_store.set_message_id(config.guild_id, config.kind, message.id)
        config.message_id = message.id
        logger.info(f"Sent new {config.kind.value} leaderboard message {message.id} in guild {config.guild_id}")
        return PublishResult.SENT

    async def edit_timer(self, config: LeaderboardConfig, content: str) -> bool:
        """Edit the countdown announcement; False when it no longer exists or the edit failed."""
        if not config.timer_message_id:
            return False
        channel = await self.resolve_channel(config.channel_id)
        if channel is None:
            return False
        try:
            message = await channel.fetch_message(config.timer_message_id)
            await message.edit(content=content)
            return True
        except discord.NotFound:
            logger.info(f"Timer message {config.timer_message_id} no longer exists")
            return False
        except discord.HTTPException as e:
            logger.error(f"Failed to edit timer message {config.timer_message_id}: {e}")
            return False

    async def send_text(self, channel, content: str) -> Optional[discord.Message]:
        try:
            return await channel.send(content)
        except discord.HTTPException as e:
            logger.error(f"Failed to send message to channel {getattr(channel, 'id', '?')}: {e}")
            return None

    async def send_embed(self, channel, embed: discord.Embed) -> Optional[discord.Message]:
        try:
            return await channel.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to send embed to channel {getattr(channel, 'id', '?')}: {e}")
            return None
