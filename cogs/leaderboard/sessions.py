"""
Voice Session Tracking
======================
In-memory map of open voice sessions, shadowed in the users table
(voice_join) so sessions survive a restart.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

from .store import ActivityStore
from .utils import elapsed_seconds

logger = logging.getLogger('discord.bot.leaderboard.sessions')

SessionKey = Tuple[int, int]


class VoiceSessionTracker:
    """
    Open voice sessions keyed by (guild_id, user_id) -> start (epoch ms).

    Closed -> Open on join, Open -> Open on a channel move (elapsed time is
    flushed), Open -> Closed on leave. Every change of the in-memory start is
    written to the durable voice_join column before the call returns.
    """

    def __init__(self, activity_store: ActivityStore):
        self.activity_store = activity_store
        self._sessions: Dict[SessionKey, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def start_for(self, guild_id: int, user_id: int) -> Optional[int]:
        return self._sessions.get((guild_id, user_id))

    def sessions_for(self, guild_id: int) -> Dict[int, int]:
        return {uid: start for (gid, uid), start in self._sessions.items() if gid == guild_id}

    async def _resolve_start(self, key: SessionKey, fallback_start: Optional[int]) -> Optional[int]:
        start = self._sessions.get(key)
        if start is None:
            # Reconciliation path: trust the durable marker, then the platform's join time
            row = await self.activity_store.get_user(*key)
            if row is not None and row.voice_join is not None:
                start = row.voice_join
            else:
                start = fallback_start
        return start

    async def open(self, guild_id: int, user_id: int, username: Optional[str], now: int) -> int:
        key = (guild_id, user_id)
        if key in self._sessions:
            # Missed leave event; keep the earlier time instead of dropping it
            logger.debug(f"Join for already tracked session {key}, treating as move")
            await self.activity_store.touch_user(guild_id, user_id, username)
            await self.move(guild_id, user_id, now)
            return self._sessions[key]

        self._sessions[key] = now
        await self.activity_store.touch_user(guild_id, user_id, username)
        await self.activity_store.set_voice_join(guild_id, user_id, now)
        logger.debug(f"Voice session opened for user {user_id} in guild {guild_id}")
        return now

    async def move(self, guild_id: int, user_id: int, now: int,
                   fallback_start: Optional[int] = None) -> int:
        """Flush whole elapsed seconds and re-anchor the open session. Returns flushed seconds."""
        key = (guild_id, user_id)
        start = await self._resolve_start(key, fallback_start)

        flushed = 0
        new_start = now
        if start is not None and start <= now:
            flushed = elapsed_seconds(start, now)
            # The sub-second remainder stays in the session
            new_start = start + flushed * 1000

        self._sessions[key] = new_start
        await self.activity_store.add_voice_seconds(guild_id, user_id, flushed, new_start)
        logger.debug(f"Voice session moved for user {user_id} in guild {guild_id} (+{flushed}s)")
        return flushed

    async def close(self, guild_id: int, user_id: int, now: int,
                    fallback_start: Optional[int] = None) -> int:
        """Flush whole elapsed seconds and end the session. Returns flushed seconds."""
        key = (guild_id, user_id)
        start = await self._resolve_start(key, fallback_start)
        self._sessions.pop(key, None)

        flushed = elapsed_seconds(start, now)
        await self.activity_store.add_voice_seconds(guild_id, user_id, flushed, None)
        logger.debug(f"Voice session closed for user {user_id} in guild {guild_id} (+{flushed}s)")
        return flushed

    async def recover(self, guild_id: int, user_id: int, username: Optional[str], now: int) -> int:
        """
        Rebuild the session of a member found connected at startup.

        A durable voice_join means the bot restarted mid-session: keep it as
        the start so the pre-restart interval is not lost. Otherwise the
        session starts now.
        """
        key = (guild_id, user_id)
        await self.activity_store.touch_user(guild_id, user_id, username)
        row = await self.activity_store.get_user(guild_id, user_id)
        if row is not None and row.voice_join is not None:
            start = row.voice_join
        else:
            start = now
            await self.activity_store.set_voice_join(guild_id, user_id, start)
        self._sessions[key] = start
        return start

    async def clear_stale(self, scanned_guild_ids: Iterable[int]) -> int:
        """
        Clear durable markers of users who are no longer connected.

        Only guilds that were actually scanned are touched. The time between
        the last known state and the restart is not credited since the
        leave time is unknown.
        """
        scanned = set(scanned_guild_ids)
        cleared = 0
        for row in await self.activity_store.open_voice_users():
            key = (row.guild_id, row.user_id)
            if row.guild_id not in scanned or key in self._sessions:
                continue
            await self.activity_store.set_voice_join(row.guild_id, row.user_id, None)
            cleared += 1
        if cleared:
            logger.info(f"Cleared {cleared} stale voice session markers")
        return cleared

    def reanchor_guild(self, guild_id: int, now: int) -> int:
        """
        Restart every open session of a guild at now, in memory only.

        Runs before a voice reset with no await in between, so a leave or
        move landing during the reset cannot credit pre-reset time.
        Follow with persist_guild once the reset is written.
        """
        keys = [k for k in self._sessions if k[0] == guild_id]
        for key in keys:
            self._sessions[key] = now
        return len(keys)

    async def persist_guild(self, guild_id: int) -> int:
        """Write the current in-memory starts of a guild back to voice_join."""
        count = 0
        for key in [k for k in self._sessions if k[0] == guild_id]:
            start = self._sessions.get(key)
            if start is None:
                # Closed while an earlier write was pending
                continue
            await self.activity_store.set_voice_join(guild_id, key[1], start)
            count += 1
        return count

    def forget_guild(self, guild_id: int) -> int:
        keys = [k for k in self._sessions if k[0] == guild_id]
        for key in keys:
            del self._sessions[key]
        return len(keys)

    def clear(self):
        self._sessions.clear()
