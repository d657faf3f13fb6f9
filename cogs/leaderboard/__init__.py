"""
Leaderboard System Initialization
==================================
Message and voice activity leaderboards with live-updating posts and
periodic winner cycles.
"""

import logging

logger = logging.getLogger('discord.bot.leaderboard')


async def setup(bot):
    """Load the leaderboard cog. Its engine opens the database in cog_load."""
    from .leaderboard_cog import LeaderboardCog

    await bot.add_cog(LeaderboardCog(bot))
    logger.info("✅ Leaderboard cog loaded")
