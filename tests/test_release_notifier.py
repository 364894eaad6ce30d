# tests/test_release_notifier.py

"""Tests for the release-day notifier."""

import unittest

from bot_fakes import CheckerTestMixin, FakePaapiClient, make_book, utc

from kindle_bot.checkers.release_notifier import ReleaseNotifier


class TestReleaseNotifier(CheckerTestMixin, unittest.TestCase):
    """Books released on today's JST date are announced once."""

    checker_cls = ReleaseNotifier

    def setUp(self) -> None:
        # 09:30 JST on 2025-05-01
        self.checker = self.make_checker(
            FakePaapiClient(), utc(2025, 5, 1, 0, 30)
        )

    def test_announces_today_only(self) -> None:
        today_midnight = make_book("A", "本A", utc(2025, 4, 30, 15))
        tomorrow = make_book("B", "本B", utc(2025, 5, 1, 15))
        today_morning = make_book("C", "本C", utc(2025, 5, 1, 3))
        undated = make_book("D", "本D")
        self.store.save_books(
            self.env.notified_key, [today_midnight, tomorrow]
        )
        self.store.save_books(
            self.env.unprocessed_key,
            [today_midnight, today_morning, undated],
        )

        self.checker.execute()

        self.assertEqual(
            self.notified_messages(),
            [
                "📚 本日発売の書籍\n本A\nhttps://www.amazon.co.jp/dp/A",
                "📚 本日発売の書籍\n本C\nhttps://www.amazon.co.jp/dp/C",
            ],
        )

    def test_nothing_released(self) -> None:
        self.checker.execute()
        self.notifier.notify.assert_not_called()


if __name__ == "__main__":
    unittest.main()
