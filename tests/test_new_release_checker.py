# tests/test_new_release_checker.py

"""Tests for the author new-release checker."""

import json
import unittest
from datetime import datetime, timezone

from bot_fakes import (
    CheckerTestMixin,
    FakePaapiClient,
    make_book,
    make_item,
    utc,
)

from kindle_bot.api.errors import AuthError
from kindle_bot.checkers.base_checker import CheckerError
from kindle_bot.checkers.new_release_checker import (
    NewReleaseChecker,
    author_line_number,
)
from kindle_bot.models.author import Author
from kindle_bot.storage.collection_store import serialize_authors

_NOW = utc(2025, 6, 1)
_CYCLE_START = 1_704_067_200


def _at(offset: int) -> datetime:
    return datetime.fromtimestamp(_CYCLE_START + offset, tz=timezone.utc)


class TestNewReleaseChecker(CheckerTestMixin, unittest.TestCase):
    """One author per slot."""

    checker_cls = NewReleaseChecker

    def setUp(self) -> None:
        self.author = Author(
            name="山田太郎",
            url="https://www.amazon.co.jp/author/1",
            latest_release_date=utc(2025, 1, 1),
            latest_release_title="旧作",
            latest_release_url="https://www.amazon.co.jp/dp/OLD",
        )
        by = ["山田 太郎"]
        self.client = FakePaapiClient(
            search_results={
                "山田太郎": [
                    make_item(
                        "N1", "新作 1", release=utc(2025, 7, 1),
                        contributors=by,
                    ),
                    make_item(
                        "PAST", "既刊 3", release=utc(2025, 3, 1),
                        contributors=by,
                    ),
                    make_item(
                        "EX", "新作 特装版", release=utc(2025, 7, 1),
                        contributors=by,
                    ),
                    make_item(
                        "N0", "予約済み", release=utc(2025, 8, 1),
                        contributors=by,
                    ),
                ]
            }
        )
        self.checker = self.make_checker(self.client, _NOW)
        self.store.save_authors(self.env.authors_key, [self.author])
        self.store.save_books(
            self.env.notified_key,
            [make_book("N0", "予約済み", utc(2025, 8, 1))],
        )
        self.store.blobs.put(
            self.env.excluded_title_keywords_key,
            json.dumps(["特装版"]).encode("utf-8"),
        )

    def _asins(self, key: str) -> list[str]:
        return sorted(b.asin for b in self.store.load_books(key))

    def test_new_release_announced_and_recorded(self) -> None:
        self.checker.execute()

        messages = self.notified_messages()
        self.assertEqual(len(messages), 1)
        self.assertTrue(messages[0].startswith("📚 新刊予定があります: 新作 1"))
        self.assertIn("作者: 山田太郎", messages[0])

        self.assertEqual(self._asins(self.env.notified_key), ["N0", "N1"])
        self.assertEqual(self._asins(self.env.upcoming_key), ["N1"])

        stored = self.store.load_authors(self.env.authors_key)[0]
        self.assertEqual(stored.latest_release_date, utc(2025, 7, 1))
        self.assertEqual(stored.latest_release_title, "新作 1")
        self.assertEqual(
            stored.latest_release_url, "https://www.amazon.co.jp/dp/N1"
        )
        self.gist.update.assert_called_once()
        self.assertEqual(self.client.search_calls[0].field, "Author")
        self.assertEqual(self.metrics.names[-1], "SlotSuccess")

    def test_nothing_new_leaves_lists(self) -> None:
        self.client.search_results["山田太郎"] = [
            make_item(
                "OLD2", "古い", release=utc(2024, 1, 1),
                contributors=["山田 太郎"],
            )
        ]
        self.checker.execute()
        self.notifier.notify.assert_not_called()
        self.assertEqual(self.store.load_books(self.env.upcoming_key), [])
        self.gist.update.assert_not_called()

    def test_no_search_results_is_an_error(self) -> None:
        self.client.search_results.clear()
        with self.assertRaises(CheckerError) as ctx:
            self.checker.execute()
        self.assertIn("no search results found", str(ctx.exception))
        self.assertEqual(self.metrics.names[-1], "SlotFailure")

    def test_search_failure_names_the_author(self) -> None:
        self.client.errors = [AuthError("denied", 401)]
        with self.assertRaises(CheckerError) as ctx:
            self.checker.execute()
        self.assertTrue(
            str(ctx.exception).startswith(
                "0001 / 0001: 山田太郎\nhttps://www.amazon.co.jp/author/1\n"
            )
        )
        self.assertIn("APIFailure", self.metrics.names)

    def test_empty_author_name(self) -> None:
        self.store.save_authors(self.env.authors_key, [Author(name="")])
        with self.assertRaises(CheckerError):
            self.checker.execute()
        self.assertEqual(self.client.search_calls, [])

    def test_slot_processed_once(self) -> None:
        self.checker.execute()
        self.checker.execute()
        self.assertEqual(len(self.client.search_calls), 1)


class TestNextTarget(CheckerTestMixin, unittest.TestCase):
    """Read-only preview of the next slot."""

    checker_cls = NewReleaseChecker

    def setUp(self) -> None:
        self.checker = self.make_checker(FakePaapiClient(), _at(30_000))
        self.store.save_authors(
            self.env.authors_key,
            [Author(name=n) for n in ("A", "B", "C")],
        )

    def test_insertion_safe(self) -> None:
        target = self.checker.next_target()
        assert target is not None
        self.assertEqual(target.index, 1)
        self.assertEqual(target.author_name, "B")
        self.assertEqual(target.line_number, 9)
        self.assertAlmostEqual(target.percentage, 200 / 3)
        self.assertEqual(target.next_execution, _at(57_600))
        self.assertTrue(target.insertion_is_safe)

    def test_insertion_shifts_target(self) -> None:
        self.now = _at(50_000)
        target = self.checker.next_target()
        assert target is not None
        self.assertEqual(target.index, 1)
        self.assertEqual(target.simulated_index, 2)
        self.assertEqual(target.simulated_name, "C")
        self.assertFalse(target.insertion_is_safe)
        self.assertEqual(target.simulated_line_number, 16)

    def test_does_not_claim_the_slot(self) -> None:
        self.checker.next_target()
        self.assertEqual(
            self.store.read_cursor(self.env.prev_index_new_release_key),
            (None, None),
        )

    def test_no_authors(self) -> None:
        self.store.save_authors(self.env.authors_key, [])
        self.assertIsNone(self.checker.next_target())


class TestAuthorLineNumber(unittest.TestCase):
    """Line numbers match the stored JSON layout."""

    def test_matches_serialised_file(self) -> None:
        authors = [Author(name=f"author-{i}") for i in range(3)]
        lines = serialize_authors(authors).decode("utf-8").splitlines()
        for i in range(3):
            with self.subTest(i=i):
                line = lines[author_line_number(i) - 1]
                self.assertEqual(line.strip(), "{")
                self.assertIn(f"author-{i}", lines[author_line_number(i)])


if __name__ == "__main__":
    unittest.main()
