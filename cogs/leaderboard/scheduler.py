"""
Update Scheduler
================
Debounces re-render requests per (guild, kind). A burst of activity inside
the delay window results in a single publish.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .leaderboard_config import LeaderboardKind, LeaderboardSettings

logger = logging.getLogger('discord.bot.leaderboard.scheduler')

ScheduleKey = Tuple[int, LeaderboardKind]
PublishCallback = Callable[[int, LeaderboardKind], Awaitable[object]]


class UpdateScheduler:
    """
    Cancel-and-reschedule timers stored per key.

    Rescheduling cancels only the pending timer. Once a timer has fired the
    publish runs as its own task and is never cancelled by a later request.
    """

    def __init__(self, publish_callback: PublishCallback,
                 default_delay: float = LeaderboardSettings.DEBOUNCE_SECONDS):
        self.publish_callback = publish_callback
        self.default_delay = default_delay
        self._timers: Dict[ScheduleKey, asyncio.TimerHandle] = {}
        self._running: Set[asyncio.Task] = set()
        self._closed = False

    def schedule(self, guild_id: int, kind: LeaderboardKind, delay: Optional[float] = None):
        if self._closed:
            return
        key = (guild_id, kind)
        if delay is None:
            delay = self.default_delay

        pending = self._timers.pop(key, None)
        if pending is not None:
            pending.cancel()

        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(max(0.0, delay), self._fire, key)

    def _fire(self, key: ScheduleKey):
        self._timers.pop(key, None)
        if self._closed:
            return
        task = asyncio.get_running_loop().create_task(self._run(key))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: ScheduleKey):
        guild_id, kind = key
        try:
            await self.publish_callback(guild_id, kind)
        except Exception as e:
            logger.error(f"Scheduled update failed for guild {guild_id} ({kind.value}): {e}", exc_info=True)

    def refresh_all(self, keys: List[ScheduleKey]):
        """Zero-delay update for every given key."""
        for guild_id, kind in keys:
            self.schedule(guild_id, kind, 0)

    def pending_keys(self) -> List[ScheduleKey]:
        return list(self._timers)

    def in_flight(self) -> int:
        return len(self._running)

    async def close(self):
        self._closed = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        logger.debug("Update scheduler closed")
