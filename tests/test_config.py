import unittest

from cogs.leaderboard.leaderboard_config import LeaderboardKind, parse_owner_ids
from cogs.leaderboard.utils import SafePaginator, elapsed_seconds, is_operator


class KindTests(unittest.TestCase):
    def test_parse_kinds(self):
        self.assertIs(LeaderboardKind.parse("message"), LeaderboardKind.MESSAGE)
        self.assertIs(LeaderboardKind.parse("Voice"), LeaderboardKind.VOICE)
        self.assertIs(LeaderboardKind.parse("vocal"), LeaderboardKind.VOICE)
        with self.assertRaises(ValueError):
            LeaderboardKind.parse("stars")


class OperatorTests(unittest.TestCase):
    def test_parse_owner_ids(self):
        self.assertEqual(parse_owner_ids("1, 2,,3 "), frozenset({1, 2, 3}))
        self.assertEqual(parse_owner_ids(""), frozenset())
        self.assertEqual(parse_owner_ids(None), frozenset())

    def test_is_operator(self):
        owners = parse_owner_ids("10,20")
        self.assertTrue(is_operator(10, owners))
        self.assertFalse(is_operator(30, owners))


class UtilsTests(unittest.TestCase):
    def test_elapsed_seconds_floors_and_never_negative(self):
        self.assertEqual(elapsed_seconds(1_000, 3_999), 2)
        self.assertEqual(elapsed_seconds(5_000, 1_000), 0)
        self.assertEqual(elapsed_seconds(None, 1_000), 0)

    def test_paginator(self):
        paginator = SafePaginator(list(range(21)), 10)
        self.assertEqual(paginator.get_page_count(), 3)
        self.assertEqual(paginator.get_page(3), [20])
        self.assertEqual(paginator.clamp(-4), 1)
        self.assertEqual(paginator.clamp("2"), 2)
        self.assertEqual(SafePaginator([], 10).get_page_count(), 1)


if __name__ == '__main__':
    unittest.main()
