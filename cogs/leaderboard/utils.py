"""
Utility functions for leaderboard system
=========================================
Shared helpers for time arithmetic, pagination, operator checks and safe
interaction responses.
"""

import logging
import math
import time
from typing import Iterable, Optional

import discord
from discord import app_commands

from .leaderboard_config import ProfileSettings

logger = logging.getLogger('discord.bot.leaderboard.utils')


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def elapsed_seconds(start_ms: Optional[int], end_ms: int) -> int:
    """Whole seconds between two epoch-ms timestamps, never negative."""
    if start_ms is None:
        return 0
    return max(0, (end_ms - start_ms) // 1000)


class SafePaginator:
    """
    1-indexed pagination over a list with clamped page numbers.
    An empty list still has one (empty) page.
    """

    def __init__(self, data: list, page_size: int = 10):
        self.data = data if data else []
        if not isinstance(page_size, int) or page_size < 1:
            logger.warning(f"Invalid page_size {page_size}, using default 10")
            page_size = 10
        self.page_size = page_size

    @staticmethod
    def page_count_for(total: int, page_size: int) -> int:
        return max(1, math.ceil(total / page_size))

    def get_page_count(self) -> int:
        return self.page_count_for(len(self.data), self.page_size)

    def clamp(self, page) -> int:
        """Clamp any requested page into [1, page_count]."""
        try:
            page = int(page)
        except (TypeError, ValueError):
            page = 1
        return min(max(1, page), self.get_page_count())

    def start_index(self, page: int) -> int:
        return (self.clamp(page) - 1) * self.page_size

    def get_page(self, page: int) -> list:
        start = self.start_index(page)
        return self.data[start:start + self.page_size]


def is_operator(user_id: int, owner_ids: Iterable[int]) -> bool:
    return user_id in set(owner_ids)


def operator_only():
    """app_commands check restricting a command to the configured operators."""
    async def predicate(interaction: discord.Interaction) -> bool:
        if is_operator(interaction.user.id, ProfileSettings.OWNER_IDS):
            return True
        raise app_commands.CheckFailure("You don't have permission to use this command.")

    return app_commands.check(predicate)


class SafeInteractionHandler:
    """
    Handle Discord interactions safely with proper error handling.
    Every helper returns True on success and logs instead of raising.
    """

    @staticmethod
    async def safe_respond(interaction: discord.Interaction, content: str = None,
                           embed: discord.Embed = None, view: discord.ui.View = None,
                           ephemeral: bool = False, **kwargs) -> bool:
        """Send the initial response, or a followup if the interaction was already answered."""
        payload = dict(kwargs)
        if content is not None:
            payload['content'] = content
        if embed is not None:
            payload['embed'] = embed
        if view is not None:
            payload['view'] = view
        try:
            if interaction.response.is_done():
                await interaction.followup.send(ephemeral=ephemeral, **payload)
            else:
                await interaction.response.send_message(ephemeral=ephemeral, **payload)
            return True

        except discord.NotFound:
            logger.warning(f"Interaction {interaction.id} expired (NotFound exception)")
            return False

        except discord.HTTPException as e:
            if e.status == 429:
                logger.warning(f"Rate limited responding to interaction {interaction.id}")
            else:
                logger.error(f"HTTP error responding to interaction {interaction.id}: {e}")
            return False

    @staticmethod
    async def safe_defer(interaction: discord.Interaction, ephemeral: bool = False,
                         update: bool = False) -> bool:
        """Defer a command response, or a component update when update=True."""
        try:
            if interaction.response.is_done():
                logger.debug(f"Interaction {interaction.id} already responded, cannot defer")
                return False
            if update:
                await interaction.response.defer()
            else:
                await interaction.response.defer(ephemeral=ephemeral, thinking=True)
            return True

        except discord.InteractionResponded:
            logger.warning(f"Interaction {interaction.id} already responded (cannot defer)")
            return False

        except discord.NotFound:
            logger.warning(f"Interaction {interaction.id} expired")
            return False

        except discord.HTTPException as e:
            logger.error(f"Error deferring interaction {interaction.id}: {e}")
            return False

    @staticmethod
    async def send_error_message(interaction: discord.Interaction, error_text: str) -> bool:
        """Send an ephemeral error message to the user."""
        return await SafeInteractionHandler.safe_respond(
            interaction,
            content=f"❌ {error_text}",
            ephemeral=True
        )
