import asyncio
import unittest
from unittest.mock import AsyncMock

from cogs.leaderboard.leaderboard_config import LeaderboardKind
from cogs.leaderboard.scheduler import UpdateScheduler

GUILD = 111


class UpdateSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def test_burst_is_coalesced_into_one_publish(self):
        callback = AsyncMock()
        scheduler = UpdateScheduler(callback, default_delay=0.05)

        for _ in range(5):
            scheduler.schedule(GUILD, LeaderboardKind.MESSAGE)
        self.assertEqual(scheduler.pending_keys(), [(GUILD, LeaderboardKind.MESSAGE)])

        await asyncio.sleep(0.2)
        callback.assert_awaited_once_with(GUILD, LeaderboardKind.MESSAGE)
        self.assertEqual(scheduler.pending_keys(), [])
        await scheduler.close()

    async def test_keys_are_independent(self):
        callback = AsyncMock()
        scheduler = UpdateScheduler(callback, default_delay=0.01)

        scheduler.schedule(GUILD, LeaderboardKind.MESSAGE)
        scheduler.schedule(GUILD, LeaderboardKind.VOICE)
        scheduler.schedule(GUILD + 1, LeaderboardKind.MESSAGE)

        await asyncio.sleep(0.1)
        self.assertEqual(callback.await_count, 3)
        await scheduler.close()

    async def test_running_publish_is_not_cancelled_by_reschedule(self):
        finished = []

        async def slow_publish(guild_id, kind):
            await asyncio.sleep(0.1)
            finished.append((guild_id, kind))

        scheduler = UpdateScheduler(slow_publish, default_delay=0)
        scheduler.schedule(GUILD, LeaderboardKind.VOICE)
        await asyncio.sleep(0.02)
        self.assertEqual(scheduler.in_flight(), 1)

        scheduler.schedule(GUILD, LeaderboardKind.VOICE)
        await asyncio.sleep(0.3)
        self.assertEqual(len(finished), 2)
        await scheduler.close()

    async def test_close_cancels_pending_and_waits_for_running(self):
        finished = []

        async def slow_publish(guild_id, kind):
            await asyncio.sleep(0.05)
            finished.append(kind)

        scheduler = UpdateScheduler(slow_publish, default_delay=0)
        scheduler.schedule(GUILD, LeaderboardKind.MESSAGE)
        await asyncio.sleep(0.01)
        scheduler.schedule(GUILD, LeaderboardKind.VOICE, delay=10)

        await scheduler.close()
        self.assertEqual(finished, [LeaderboardKind.MESSAGE])
        self.assertEqual(scheduler.pending_keys(), [])

        scheduler.schedule(GUILD, LeaderboardKind.MESSAGE)
        self.assertEqual(scheduler.pending_keys(), [])

    async def test_publish_errors_are_logged(self):
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = UpdateScheduler(callback, default_delay=0)

        with self.assertLogs('discord.bot.leaderboard.scheduler', level='ERROR'):
            scheduler.schedule(GUILD, LeaderboardKind.MESSAGE)
            await asyncio.sleep(0.05)
        await scheduler.close()

    async def test_refresh_all_schedules_every_key(self):
        callback = AsyncMock()
        scheduler = UpdateScheduler(callback, default_delay=5)

        scheduler.refresh_all([(GUILD, LeaderboardKind.MESSAGE), (GUILD, LeaderboardKind.VOICE)])
        await asyncio.sleep(0.05)
        self.assertEqual(callback.await_count, 2)
        await scheduler.close()


if __name__ == '__main__':
    unittest.main()
