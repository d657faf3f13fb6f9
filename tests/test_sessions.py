import unittest

from cogs.leaderboard.sessions import VoiceSessionTracker
from cogs.leaderboard.store import ActivityStore, LeaderboardDatabase

GUILD = 111
OTHER_GUILD = 222
T0 = 1_700_000_000_000


class VoiceSessionTrackerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.database = LeaderboardDatabase(':memory:')
        await self.database.connect()
        self.store = ActivityStore(self.database)
        self.tracker = VoiceSessionTracker(self.store)

    async def asyncTearDown(self):
        await self.database.close()

    async def test_open_persists_start(self):
        await self.tracker.open(GUILD, 1, "alice", T0)

        self.assertEqual(self.tracker.start_for(GUILD, 1), T0)
        self.assertEqual(len(self.tracker), 1)
        self.assertEqual((await self.store.get_user(GUILD, 1)).voice_join, T0)

    async def test_join_move_leave_sums_to_whole_seconds(self):
        await self.tracker.open(GUILD, 1, "alice", T0)
        first = await self.tracker.move(GUILD, 1, T0 + 1_500)
        second = await self.tracker.close(GUILD, 1, T0 + 4_200)

        self.assertEqual((first, second), (1, 3))
        row = await self.store.get_user(GUILD, 1)
        self.assertEqual(row.voice_seconds, 4)
        self.assertIsNone(row.voice_join)
        self.assertIsNone(self.tracker.start_for(GUILD, 1))

    async def test_move_keeps_sub_second_remainder(self):
        await self.tracker.open(GUILD, 1, "alice", T0)
        await self.tracker.move(GUILD, 1, T0 + 2_700)

        self.assertEqual(self.tracker.start_for(GUILD, 1), T0 + 2_000)
        self.assertEqual((await self.store.get_user(GUILD, 1)).voice_join, T0 + 2_000)

    async def test_second_join_is_treated_as_move(self):
        await self.tracker.open(GUILD, 1, "alice", T0)
        await self.tracker.open(GUILD, 1, "alice", T0 + 2_500)

        self.assertEqual((await self.store.get_user(GUILD, 1)).voice_seconds, 2)
        self.assertEqual(self.tracker.start_for(GUILD, 1), T0 + 2_000)

    async def test_close_without_tracked_session_uses_durable_marker(self):
        await self.store.set_voice_join(GUILD, 1, T0)
        flushed = await self.tracker.close(GUILD, 1, T0 + 10_000)

        self.assertEqual(flushed, 10)
        self.assertEqual((await self.store.get_user(GUILD, 1)).voice_seconds, 10)

    async def test_close_without_any_start_credits_nothing(self):
        flushed = await self.tracker.close(GUILD, 1, T0)
        self.assertEqual(flushed, 0)

    async def test_close_with_platform_join_time(self):
        flushed = await self.tracker.close(GUILD, 1, T0 + 5_000, fallback_start=T0)
        self.assertEqual(flushed, 5)

    async def test_recovery_keeps_original_start(self):
        await self.tracker.open(GUILD, 1, "alice", T0)

        # Process restart: the in-memory map is gone, the durable marker is not
        restarted = VoiceSessionTracker(self.store)
        start = await restarted.recover(GUILD, 1, "alice", T0 + 60_000)
        self.assertEqual(start, T0)

        flushed = await restarted.close(GUILD, 1, T0 + 90_000)
        self.assertEqual(flushed, 90)

    async def test_recovery_without_marker_starts_now(self):
        start = await self.tracker.recover(GUILD, 1, "alice", T0)

        self.assertEqual(start, T0)
        self.assertEqual((await self.store.get_user(GUILD, 1)).voice_join, T0)

    async def test_clear_stale_only_touches_scanned_guilds(self):
        await self.store.set_voice_join(GUILD, 1, T0)
        await self.store.set_voice_join(GUILD, 2, T0)
        await self.store.set_voice_join(OTHER_GUILD, 3, T0)
        await self.tracker.recover(GUILD, 1, "alice", T0 + 1_000)

        cleared = await self.tracker.clear_stale([GUILD])

        self.assertEqual(cleared, 1)
        self.assertEqual((await self.store.get_user(GUILD, 1)).voice_join, T0)
        stale = await self.store.get_user(GUILD, 2)
        self.assertIsNone(stale.voice_join)
        self.assertEqual(stale.voice_seconds, 0)
        self.assertEqual((await self.store.get_user(OTHER_GUILD, 3)).voice_join, T0)

    async def test_reanchor_guild(self):
        await self.tracker.open(GUILD, 1, "alice", T0)
        await self.tracker.open(OTHER_GUILD, 2, "bob", T0)

        count = self.tracker.reanchor_guild(GUILD, T0 + 50_000)

        self.assertEqual(count, 1)
        self.assertEqual(self.tracker.start_for(GUILD, 1), T0 + 50_000)
        self.assertEqual((await self.store.get_user(GUILD, 1)).voice_join, T0)

        self.assertEqual(await self.tracker.persist_guild(GUILD), 1)
        self.assertEqual((await self.store.get_user(GUILD, 1)).voice_join, T0 + 50_000)
        self.assertEqual(self.tracker.start_for(OTHER_GUILD, 2), T0)
        self.assertEqual((await self.store.get_user(OTHER_GUILD, 2)).voice_join, T0)

    async def test_forget_guild(self):
        await self.tracker.open(GUILD, 1, "alice", T0)
        await self.tracker.open(GUILD, 2, "bob", T0)
        await self.tracker.open(OTHER_GUILD, 3, "carol", T0)

        self.assertEqual(self.tracker.forget_guild(GUILD), 2)
        self.assertEqual(len(self.tracker), 1)
        self.assertEqual(self.tracker.sessions_for(OTHER_GUILD), {3: T0})


if __name__ == '__main__':
    unittest.main()
