"""
Ranking
=======
Ranked snapshots of the top participants for a leaderboard kind.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .leaderboard_config import LeaderboardKind, LeaderboardSettings
from .sessions import VoiceSessionTracker
from .store import ActivityStore
from .utils import elapsed_seconds

logger = logging.getLogger('discord.bot.leaderboard.ranking')


@dataclass
class RankingEntry:
    user_id: int
    username: Optional[str]
    value: int  # message count or voice seconds, open session included


class RankingEngine:
    """
    Merges durable counters with in-flight voice sessions.

    The store query only bounds the candidate set; voice totals are re-sorted
    after open-session time is added because it can reorder the top.
    """

    def __init__(self, activity_store: ActivityStore, tracker: VoiceSessionTracker,
                 candidate_limit: int = LeaderboardSettings.MAX_MEMBERS_FETCH):
        self.activity_store = activity_store
        self.tracker = tracker
        self.candidate_limit = candidate_limit

    async def rank(self, guild_id: int, kind: LeaderboardKind, now: int,
                   limit: Optional[int] = None) -> List[RankingEntry]:
        rows = await self.activity_store.top_users(guild_id, kind, self.candidate_limit)

        entries = []
        for row in rows:
            if kind == LeaderboardKind.MESSAGE:
                value = row.messages
            else:
                start = self.tracker.start_for(guild_id, row.user_id)
                if start is None:
                    start = row.voice_join
                value = row.voice_seconds + elapsed_seconds(start, now)
            entries.append(RankingEntry(user_id=row.user_id, username=row.username, value=value))

        # Ties go to the lower user id so the order never depends on storage
        entries.sort(key=lambda e: (-e.value, e.user_id))

        if limit is not None:
            entries = entries[:max(0, limit)]
        return entries
