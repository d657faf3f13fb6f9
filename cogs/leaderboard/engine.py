"""
Leaderboard Engine
==================
Controller owning the process-wide leaderboard state: the database
connection, the voice session tracker and the pending update timers.
Created when the cog loads and torn down when it unloads.
"""

import itertools
import logging
from typing import Iterable, List, Optional, Tuple

import discord

from .cycle import CycleEngine
from .leaderboard_config import LeaderboardKind, LeaderboardSettings
from .publisher import LeaderboardPublisher, PublishResult
from .ranking import RankingEngine
from .render import build_compact_embed, build_paginated_embed
from .scheduler import UpdateScheduler
from .sessions import VoiceSessionTracker
from .store import ActivityStore, LeaderboardConfig, LeaderboardConfigStore, LeaderboardDatabase
from .utils import now_ms

logger = logging.getLogger('discord.bot.leaderboard.engine')


class LeaderboardEngine:

    def __init__(self, bot, db_path: str = LeaderboardSettings.DB_PATH,
                 cycle_period_seconds: int = LeaderboardSettings.CYCLE_PERIOD_SECONDS,
                 debounce_seconds: float = LeaderboardSettings.DEBOUNCE_SECONDS):
        self.bot = bot
        self.database = LeaderboardDatabase(db_path)
        self.activity_store = ActivityStore(self.database)
        self.config_store = LeaderboardConfigStore(self.database)
        self.tracker = VoiceSessionTracker(self.activity_store)
        self.ranking = RankingEngine(self.activity_store, self.tracker)
        self.publisher = LeaderboardPublisher(bot, self.config_store)
        self.scheduler = UpdateScheduler(self.refresh, debounce_seconds)
        self.cycle = CycleEngine(
            self.config_store, self.activity_store, self.tracker,
            self.ranking, self.publisher, self.scheduler, cycle_period_seconds,
        )

    # ==================== LIFECYCLE ====================
    async def start(self):
        await self.database.connect()

    async def close(self):
        await self.scheduler.close()
        self.tracker.clear()
        await self.database.close()
        logger.info("Leaderboard engine closed")

    # ==================== PUBLISHING ====================
    def request_update(self, guild_id: int, kind: LeaderboardKind, delay: Optional[float] = None):
        self.scheduler.schedule(guild_id, kind, delay)

    async def refresh(self, guild_id: int, kind: LeaderboardKind, now: Optional[int] = None) -> Optional[PublishResult]:
        """Re-render and publish the live view. None when there is nothing to publish."""
        config = await self.config_store.get(guild_id, kind)
        if config is None or not config.active:
            return None

        now = now if now is not None else now_ms()
        entries = await self.ranking.rank(guild_id, kind, now, limit=LeaderboardSettings.LEADERBOARD_TOP)
        result = await self.publisher.publish(config, build_compact_embed(entries, kind, config, now))
        logger.debug(f"Refreshed {kind.value} leaderboard for guild {guild_id}: {result.value}")
        return result

    async def refresh_all(self) -> int:
        configs = await self.config_store.all_active()
        self.scheduler.refresh_all([(c.guild_id, c.kind) for c in configs])
        return len(configs)

    async def sweep(self, now: Optional[int] = None) -> List[LeaderboardConfig]:
        return await self.cycle.sweep(now if now is not None else now_ms())

    async def leaderboard_page(self, guild_id: int, kind: LeaderboardKind, page: int,
                               now: Optional[int] = None) -> Tuple[discord.Embed, int, int]:
        now = now if now is not None else now_ms()
        entries = await self.ranking.rank(guild_id, kind, now)
        return build_paginated_embed(entries, kind, page, now)

    # ==================== COMMANDS ====================
    async def setup_leaderboard(self, guild_id: int, kind: LeaderboardKind, channel_id: int,
                                now: Optional[int] = None) -> Optional[LeaderboardConfig]:
        return await self.cycle.start_cycle(
            guild_id, kind, channel_id, LeaderboardSettings.SETUP_CYCLE_SECONDS,
            now if now is not None else now_ms(),
        )

    async def stop_leaderboard(self, guild_id: int, kind: LeaderboardKind) -> bool:
        config = await self.config_store.get(guild_id, kind)
        if config is None or not config.active:
            return False
        await self.config_store.set_active(guild_id, kind, False)
        logger.info(f"Stopped {kind.value} leaderboard for guild {guild_id}")
        return True

    # ==================== ACTIVITY EVENTS ====================
    async def handle_message(self, guild_id: int, user_id: int, username: Optional[str]):
        await self.activity_store.record_message(guild_id, user_id, username)
        self.request_update(guild_id, LeaderboardKind.MESSAGE)

    async def handle_voice_update(self, guild_id: int, user_id: int, username: Optional[str],
                                  before_channel_id: Optional[int], after_channel_id: Optional[int],
                                  now: Optional[int] = None) -> bool:
        """Apply a join, move or leave. Returns False for changes within the same channel."""
        if before_channel_id == after_channel_id:
            return False

        now = now if now is not None else now_ms()
        if before_channel_id is None:
            await self.tracker.open(guild_id, user_id, username, now)
        elif after_channel_id is None:
            await self.tracker.close(guild_id, user_id, now)
        else:
            await self.tracker.move(guild_id, user_id, now)

        self.request_update(guild_id, LeaderboardKind.VOICE)
        return True

    # ==================== STARTUP / TEARDOWN ====================
    async def recover_sessions(self, guilds: Iterable[discord.Guild], now: Optional[int] = None) -> int:
        """Rebuild open sessions from members currently connected, then drop stale markers."""
        now = now if now is not None else now_ms()
        scanned = []
        recovered = 0
        for guild in guilds:
            for channel in itertools.chain(guild.voice_channels, guild.stage_channels):
                for member in channel.members:
                    if member.bot:
                        continue
                    await self.tracker.recover(guild.id, member.id, member.display_name, now)
                    recovered += 1
            scanned.append(guild.id)
            self.request_update(guild.id, LeaderboardKind.VOICE, 0)

        await self.tracker.clear_stale(scanned)
        logger.info(f"Recovered {recovered} voice sessions across {len(scanned)} guilds")
        return recovered

    async def forget_guild(self, guild_id: int) -> int:
        dropped = self.tracker.forget_guild(guild_id)
        deactivated = await self.config_store.deactivate_guild(guild_id)
        logger.info(
            f"Left guild {guild_id}: dropped {dropped} voice sessions, deactivated {deactivated} leaderboards"
        )
        return deactivated
