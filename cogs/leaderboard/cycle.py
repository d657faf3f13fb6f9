"""
Cycle Engine
============
Finalizes expired leaderboard cycles (winners snapshot, counter reset, new
window) and starts fresh cycles for the setup command.
"""

import logging
from typing import List, Optional

from .leaderboard_config import LeaderboardKind, LeaderboardSettings
from .publisher import LeaderboardPublisher, PublishResult
from .ranking import RankingEngine
from .render import build_compact_embed, build_timer_text, build_winners_text
from .scheduler import UpdateScheduler
from .sessions import VoiceSessionTracker
from .store import ActivityStore, LeaderboardConfig, LeaderboardConfigStore

logger = logging.getLogger('discord.bot.leaderboard.cycle')


class CycleEngine:

    def __init__(self, config_store: LeaderboardConfigStore, activity_store: ActivityStore,
                 tracker: VoiceSessionTracker, ranking: RankingEngine,
                 publisher: LeaderboardPublisher, scheduler: UpdateScheduler,
                 cycle_period_seconds: int = LeaderboardSettings.CYCLE_PERIOD_SECONDS):
        self.config_store = config_store
        self.activity_store = activity_store
        self.tracker = tracker
        self.ranking = ranking
        self.publisher = publisher
        self.scheduler = scheduler
        self.cycle_period_ms = int(cycle_period_seconds) * 1000

    async def sweep(self, now: int) -> List[LeaderboardConfig]:
        """Finalize every active config whose cycle has ended. Returns the new configs."""
        finalized = []
        for config in await self.config_store.all_active():
            if not config.is_expired(now):
                continue
            try:
                finalized.append(await self.finalize(config, now))
            except Exception as e:
                logger.error(
                    f"Failed to finalize {config.kind.value} leaderboard for guild {config.guild_id}: {e}",
                    exc_info=True
                )
        return finalized

    def next_window_start(self, end_at: int, now: int) -> int:
        # Stay aligned with the expired window unless a whole period was missed
        if now - end_at < self.cycle_period_ms:
            return end_at
        return now

    async def finalize(self, config: LeaderboardConfig, now: int) -> LeaderboardConfig:
        guild_id, kind = config.guild_id, config.kind
        logger.info(f"Finalizing {kind.value} leaderboard cycle for guild {guild_id}")

        standings = await self.ranking.rank(guild_id, kind, now, limit=LeaderboardSettings.LEADERBOARD_TOP)
        winners_text = build_winners_text(standings, kind)

        await self.config_store.set_winners_text(guild_id, kind, winners_text)
        config = config.with_changes(winners_text=winners_text)

        result = await self.publisher.publish(config, build_compact_embed(standings, kind, config, now))
        if result is PublishResult.FAILED:
            logger.warning(f"Final standings for guild {guild_id} ({kind.value}) could not be published")

        # Open-session time up to now was ranked above, so it belongs to the closing cycle
        if kind == LeaderboardKind.VOICE:
            reanchored = self.tracker.reanchor_guild(guild_id, now)
            await self.activity_store.reset(guild_id, kind)
            await self.tracker.persist_guild(guild_id)
            if reanchored:
                logger.debug(f"Re-anchored {reanchored} open voice sessions in guild {guild_id}")
        else:
            await self.activity_store.reset(guild_id, kind)

        start_at = self.next_window_start(config.end_at, now)
        config = config.with_changes(
            start_at=start_at,
            end_at=start_at + self.cycle_period_ms,
            active=True,
        )
        await self.config_store.upsert(config)

        if config.timer_message_id:
            await self.publisher.edit_timer(config, build_timer_text(config.end_at))

        self.scheduler.schedule(guild_id, kind, LeaderboardSettings.POST_FINALIZE_DELAY_SECONDS)
        logger.info(
            f"New {kind.value} cycle for guild {guild_id}: {config.start_at} -> {config.end_at}"
        )
        return config

    async def start_cycle(self, guild_id: int, kind: LeaderboardKind, channel_id: int,
                          duration_seconds: int, now: int) -> Optional[LeaderboardConfig]:
        """
        Start a fresh cycle in a channel: no message ids, no winners.

        Sends the countdown announcement, then the initial compact view, and
        persists both message ids. Returns None when the channel cannot be used.
        """
        channel = await self.publisher.resolve_channel(channel_id)
        if channel is None:
            return None

        config = LeaderboardConfig(
            guild_id=guild_id,
            kind=kind,
            channel_id=channel_id,
            start_at=now,
            end_at=now + int(duration_seconds) * 1000,
            active=True,
        )
        await self.config_store.upsert(config)

        timer_message = await self.publisher.send_text(channel, build_timer_text(config.end_at))
        if timer_message is not None:
            config.timer_message_id = timer_message.id
            await self.config_store.set_timer_message_id(guild_id, kind, timer_message.id)

        standings = await self.ranking.rank(guild_id, kind, now, limit=LeaderboardSettings.LEADERBOARD_TOP)
        message = await self.publisher.send_embed(channel, build_compact_embed(standings, kind, config, now))
        if message is not None:
            config.message_id = message.id
            await self.config_store.set_message_id(guild_id, kind, message.id)

        logger.info(
            f"Started {kind.value} leaderboard in channel {channel_id} for guild {guild_id} "
            f"({duration_seconds}s cycle)"
        )
        return config
