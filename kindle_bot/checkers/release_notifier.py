# kindle_bot/checkers/release_notifier.py

"""Daily announcement of books released today."""

from typing import Any

from kindle_bot.checkers.base_checker import BaseChecker
from kindle_bot.checkers.rules import format_release_day_message, to_local
from kindle_bot.models.book import KindleBook


class ReleaseNotifier(BaseChecker):
    """Announces every notified or unprocessed book released today (JST)."""

    checker_id = "release-notifier"
    metrics_name = "ReleaseNotifier"

    def run(self, **options: Any) -> None:
        today = to_local(self.clock()).date()
        self.logger.info("Checking for books released on %s", today)

        books = self.store.load_books(
            self.env.notified_key
        ) + self.store.load_books(self.env.unprocessed_key)

        for book in self.released_today(books):
            self.logger.info(
                "Notifying book [%s]: %s - %s",
                today,
                book.title,
                book.url,
            )
            self.notifier.notify(format_release_day_message(book))

    def released_today(self, books: list[KindleBook]) -> list[KindleBook]:
        """Books whose release date falls on today's local date, once each."""
        today = to_local(self.clock()).date()
        seen: set[str] = set()
        result: list[KindleBook] = []
        for book in books:
            if book.release_date is None:
                continue
            if to_local(book.release_date).date() != today:
                continue
            if book.asin in seen:
                continue
            seen.add(book.asin)
            result.append(book)
        return result
