import logging
from typing import Optional

import aiohttp
import discord
from discord import app_commands
from discord.ext import commands

from cogs.leaderboard.leaderboard_config import Emojis, ProfileSettings
from cogs.leaderboard.utils import SafeInteractionHandler, operator_only

PRESENCE_STATUSES = {
    'online': discord.Status.online,
    'idle': discord.Status.idle,
    'dnd': discord.Status.dnd,
    'invisible': discord.Status.invisible,
}

ACTIVITY_TYPES = {
    'playing': discord.ActivityType.playing,
    'streaming': discord.ActivityType.streaming,
    'listening': discord.ActivityType.listening,
    'watching': discord.ActivityType.watching,
    'competing': discord.ActivityType.competing,
}


def build_activity(activity_type: str, text: Optional[str] = None,
                   stream_url: str = ProfileSettings.STREAM_URL) -> discord.BaseActivity:
    if activity_type == 'streaming':
        return discord.Streaming(name=text or ProfileSettings.DEFAULT_STREAM_TEXT, url=stream_url)
    return discord.Activity(
        type=ACTIVITY_TYPES[activity_type],
        name=text or ProfileSettings.DEFAULT_ACTIVITY_TEXT,
    )


class BotProfileCog(commands.Cog):
    """Owner-only commands that change the bot account's name, avatar and presence."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        # change_presence replaces both fields, so the last values are kept here
        self.status: discord.Status = discord.Status.online
        self.activity: Optional[discord.BaseActivity] = None
        self.logger = logging.getLogger('discord.bot.profile')

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        if isinstance(error, app_commands.CheckFailure):
            await SafeInteractionHandler.send_error_message(
                interaction, str(error) or "You don't have permission to use this command."
            )
            return
        self.logger.error(f"Error in profile command: {error}", exc_info=error)
        await SafeInteractionHandler.send_error_message(interaction, "An internal error occurred.")

    async def _download(self, url: str) -> bytes:
        session = getattr(self.bot, 'session', None)
        if session is None or session.closed:
            raise RuntimeError("HTTP session is not available")
        async with session.get(url) as resp:
            if resp.status != 200:
                raise ValueError(f"HTTP {resp.status}")
            return await resp.read()

    @app_commands.command(name="bot-name", description="[OWNER] Change the bot's username")
    @app_commands.describe(name="New username")
    @operator_only()
    async def change_name(self, interaction: discord.Interaction, name: str):
        try:
            await self.bot.user.edit(username=name)
        except discord.HTTPException as e:
            await SafeInteractionHandler.send_error_message(interaction, f"Error: {e}")
            return
        self.logger.info(f"{interaction.user} renamed the bot to {name}")
        await SafeInteractionHandler.safe_respond(
            interaction, content=f"{Emojis.SUCCESS} Bot name changed to **{name}**.", ephemeral=True
        )

    @app_commands.command(name="bot-avatar", description="[OWNER] Change the bot's avatar")
    @app_commands.describe(url="Link to the image")
    @operator_only()
    async def change_avatar(self, interaction: discord.Interaction, url: str):
        await SafeInteractionHandler.safe_defer(interaction, ephemeral=True)
        try:
            image = await self._download(url)
            await self.bot.user.edit(avatar=image)
        except (aiohttp.ClientError, RuntimeError, ValueError, discord.HTTPException) as e:
            await SafeInteractionHandler.send_error_message(interaction, f"Error: {e}")
            return
        self.logger.info(f"{interaction.user} changed the bot avatar")
        await SafeInteractionHandler.safe_respond(
            interaction, content=f"{Emojis.SUCCESS} Bot avatar changed.", ephemeral=True
        )

    @app_commands.command(name="bot-presence", description="[OWNER] Change the bot's online status")
    @app_commands.describe(status="New status")
    @app_commands.choices(status=[app_commands.Choice(name=key, value=key) for key in PRESENCE_STATUSES])
    @operator_only()
    async def change_status(self, interaction: discord.Interaction, status: app_commands.Choice[str]):
        self.status = PRESENCE_STATUSES[status.value]
        try:
            await self.bot.change_presence(status=self.status, activity=self.activity)
        except discord.HTTPException as e:
            await SafeInteractionHandler.send_error_message(interaction, f"Error: {e}")
            return
        await SafeInteractionHandler.safe_respond(
            interaction, content=f"{Emojis.SUCCESS} Bot presence changed to **{status.value}**.", ephemeral=True
        )

    @app_commands.command(name="bot-status", description="[OWNER] Change the bot's activity")
    @app_commands.describe(type="Activity type", text="Activity text (optional for streaming)")
    @app_commands.choices(type=[app_commands.Choice(name=key, value=key) for key in ACTIVITY_TYPES])
    @operator_only()
    async def change_activity(self, interaction: discord.Interaction, type: app_commands.Choice[str],
                              text: Optional[str] = None):
        self.activity = build_activity(type.value, text)
        try:
            await self.bot.change_presence(status=self.status, activity=self.activity)
        except discord.HTTPException as e:
            await SafeInteractionHandler.send_error_message(interaction, f"Error: {e}")
            return
        await SafeInteractionHandler.safe_respond(
            interaction, content=f"{Emojis.SUCCESS} Bot status changed to **{type.value}**.", ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(BotProfileCog(bot))
