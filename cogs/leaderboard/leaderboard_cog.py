import logging
from datetime import timedelta

import discord
import humanize
from discord import app_commands
from discord.ext import commands, tasks

from .engine import LeaderboardEngine
from .leaderboard_config import EMBED_COLOR, Emojis, LeaderboardKind, LeaderboardSettings
from .render import build_page_view, parse_page_custom_id, target_page
from .utils import SafeInteractionHandler, operator_only

KIND_CHOICES = [
    app_commands.Choice(name="Messages", value=LeaderboardKind.MESSAGE.value),
    app_commands.Choice(name="Voice", value=LeaderboardKind.VOICE.value),
]


class LeaderboardCog(commands.Cog):
    def __init__(self, bot: commands.Bot, engine: LeaderboardEngine = None):
        self.bot = bot
        self.engine = engine or LeaderboardEngine(bot)
        self._sessions_recovered = False
        self.logger = logging.getLogger('discord.bot.leaderboard')

    async def cog_load(self):
        await self.engine.start()
        # Loops start from on_ready, once the guild cache is populated

    async def cog_unload(self):
        self.expiry_sweep.cancel()
        self.refresh_loop.cancel()
        await self.engine.close()

    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        if isinstance(error, app_commands.CheckFailure):
            await SafeInteractionHandler.send_error_message(
                interaction, str(error) or "You don't have permission to use this command."
            )
            return

        command_name = interaction.command.name if interaction.command else "unknown"
        self.logger.error(f"Error in /{command_name}: {error}", exc_info=error)
        await SafeInteractionHandler.send_error_message(interaction, "An internal error occurred.")

    # ==================== LISTENERS ====================
    @commands.Cog.listener()
    async def on_ready(self):
        if not self._sessions_recovered:
            self._sessions_recovered = True
            try:
                await self.engine.recover_sessions(self.bot.guilds)
            except Exception as e:
                self.logger.error(f"Voice session recovery failed: {e}", exc_info=True)

        if not self.expiry_sweep.is_running():
            self.expiry_sweep.start()
        if not self.refresh_loop.is_running():
            self.refresh_loop.start()
        self.logger.info("Leaderboard tasks started")

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is None:
            return
        try:
            await self.engine.handle_message(message.guild.id, message.author.id, message.author.display_name)
        except Exception as e:
            self.logger.error(f"Error recording message from {message.author.id}: {e}", exc_info=True)

    @commands.Cog.listener()
    async def on_voice_state_update(self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState):
        if member.bot:
            return
        try:
            await self.engine.handle_voice_update(
                member.guild.id,
                member.id,
                member.display_name,
                before.channel.id if before.channel else None,
                after.channel.id if after.channel else None,
            )
        except Exception as e:
            self.logger.error(f"Error in voice state update for {member.id}: {e}", exc_info=True)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild):
        try:
            await self.engine.forget_guild(guild.id)
        except Exception as e:
            self.logger.error(f"Error cleaning up leaderboards for guild {guild.id}: {e}", exc_info=True)

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        if interaction.type != discord.InteractionType.component or interaction.guild is None:
            return
        parsed = parse_page_custom_id((interaction.data or {}).get('custom_id'))
        if parsed is None:
            return

        prefix, kind, page = parsed
        try:
            await SafeInteractionHandler.safe_defer(interaction, update=True)
            embed, page, pages = await self.engine.leaderboard_page(
                interaction.guild.id, kind, target_page(prefix, page)
            )
            await interaction.edit_original_response(embed=embed, view=build_page_view(kind, page, pages))
        except discord.HTTPException as e:
            self.logger.warning(f"Failed to turn leaderboard page: {e}")
        except Exception as e:
            self.logger.error(f"Error in leaderboard pagination ({kind.value}): {e}", exc_info=True)
            await SafeInteractionHandler.send_error_message(interaction, "An error occurred while updating the leaderboard.")

    # ==================== BACKGROUND TASKS ====================
    @tasks.loop(seconds=LeaderboardSettings.EXPIRY_CHECK_SECONDS)
    async def expiry_sweep(self):
        try:
            finalized = await self.engine.sweep()
            if finalized:
                self.logger.info(f"Finalized {len(finalized)} leaderboard cycles")
        except Exception as e:
            self.logger.error(f"Error in leaderboard expiry sweep: {e}", exc_info=True)

    @expiry_sweep.before_loop
    async def before_expiry_sweep(self):
        await self.bot.wait_until_ready()

    @tasks.loop(seconds=LeaderboardSettings.REFRESH_INTERVAL_SECONDS)
    async def refresh_loop(self):
        try:
            await self.engine.refresh_all()
        except Exception as e:
            self.logger.error(f"Error in leaderboard refresh loop: {e}", exc_info=True)

    @refresh_loop.before_loop
    async def before_refresh_loop(self):
        await self.bot.wait_until_ready()

    # ==================== COMMANDS ====================
    @app_commands.command(name="leaderboard", description="Show the full leaderboard")
    @app_commands.describe(kind="Which leaderboard to show")
    @app_commands.choices(kind=KIND_CHOICES)
    @app_commands.guild_only()
    async def leaderboard(self, interaction: discord.Interaction, kind: app_commands.Choice[str]):
        await SafeInteractionHandler.safe_defer(interaction)
        lb_kind = LeaderboardKind.parse(kind.value)
        embed, page, pages = await self.engine.leaderboard_page(interaction.guild.id, lb_kind, 1)
        await SafeInteractionHandler.safe_respond(
            interaction, embed=embed, view=build_page_view(lb_kind, page, pages)
        )

    @app_commands.command(name="setleaderboard", description="[OWNER] Configure a live leaderboard channel")
    @app_commands.describe(kind="Leaderboard to configure", channel="Channel the leaderboard is posted in")
    @app_commands.choices(kind=KIND_CHOICES)
    @app_commands.guild_only()
    @operator_only()
    async def setleaderboard(self, interaction: discord.Interaction, kind: app_commands.Choice[str],
                             channel: discord.TextChannel):
        await SafeInteractionHandler.safe_defer(interaction, ephemeral=True)
        lb_kind = LeaderboardKind.parse(kind.value)

        config = await self.engine.setup_leaderboard(interaction.guild.id, lb_kind, channel.id)
        if config is None:
            await SafeInteractionHandler.send_error_message(interaction, "Invalid channel.")
            return

        cycle = humanize.naturaldelta(timedelta(seconds=LeaderboardSettings.SETUP_CYCLE_SECONDS))
        await SafeInteractionHandler.safe_respond(
            interaction,
            content=f"{Emojis.SUCCESS} Leaderboard **{lb_kind.value}** configured in {channel.mention} ({cycle} cycle).",
            ephemeral=True,
        )
        self.logger.info(f"{interaction.user} configured {lb_kind.value} leaderboard in guild {interaction.guild.id}")

    @app_commands.command(name="stopleaderboard", description="[OWNER] Stop a live leaderboard")
    @app_commands.describe(kind="Leaderboard to stop")
    @app_commands.choices(kind=KIND_CHOICES)
    @app_commands.guild_only()
    @operator_only()
    async def stopleaderboard(self, interaction: discord.Interaction, kind: app_commands.Choice[str]):
        lb_kind = LeaderboardKind.parse(kind.value)
        if await self.engine.stop_leaderboard(interaction.guild.id, lb_kind):
            await SafeInteractionHandler.safe_respond(
                interaction,
                content=f"{Emojis.SUCCESS} Leaderboard **{lb_kind.value}** stopped. Activity is still counted.",
                ephemeral=True,
            )
        else:
            await SafeInteractionHandler.send_error_message(
                interaction, f"No active **{lb_kind.value}** leaderboard in this server."
            )

    @app_commands.command(name="help", description="List the bot commands")
    async def help(self, interaction: discord.Interaction):
        embed = discord.Embed(title="📖 Commands", color=EMBED_COLOR)
        embed.add_field(
            name="/leaderboard",
            value="Full ranking (messages or voice) with pages.\n**Available to:** everyone",
            inline=False,
        )
        embed.add_field(
            name="/setleaderboard",
            value="Post a live leaderboard in a channel and start a new cycle.\n**Available to:** owners only",
            inline=False,
        )
        embed.add_field(
            name="/stopleaderboard",
            value="Stop updating a live leaderboard.\n**Available to:** owners only",
            inline=False,
        )
        embed.add_field(
            name="/bot-name, /bot-avatar, /bot-presence, /bot-status",
            value="Change the bot's profile and presence.\n**Available to:** owners only",
            inline=False,
        )
        await SafeInteractionHandler.safe_respond(interaction, embed=embed, ephemeral=True)
