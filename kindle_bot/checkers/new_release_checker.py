# kindle_bot/checkers/new_release_checker.py

"""Announces upcoming Kindle releases of watched authors."""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from kindle_bot.api.errors import LookupApiError
from kindle_bot.api.paapi_client import ApiItem, SearchQuery
from kindle_bot.checkers.base_checker import BaseChecker, CheckerError
from kindle_bot.checkers.rules import (
    format_author_error,
    format_new_release_message,
    should_skip_release,
)
from kindle_bot.config.checker_config import SlotCheckerConfig
from kindle_bot.config.settings import is_lambda
from kindle_bot.models.author import Author, sort_unique_authors
from kindle_bot.models.book import KindleBook
from kindle_bot.services.notifier import render_authors_markdown
from kindle_bot.services.reconciliation import move_books
from kindle_bot.services.retry import RetryExhaustedError
from kindle_bot.services.slot_selector import (
    due_index,
    next_execution_time,
    process_slot,
)


def author_line_number(index: int) -> int:
    """Line of the ``{`` opening ``authors[index]`` in the stored JSON."""
    lines_per_author = len(fields(Author)) + 2
    return lines_per_author * index + 2


@dataclass(frozen=True)
class NextTarget:
    """Who the next slot processes, and what inserting an author does."""

    index: int
    total: int
    author_name: str
    line_number: int
    next_execution: datetime
    simulated_index: int
    simulated_name: str

    @property
    def percentage(self) -> float:
        return (self.index + 1) / self.total * 100

    @property
    def insertion_is_safe(self) -> bool:
        """True when adding one author keeps the due index unchanged."""
        return self.simulated_index == self.index

    @property
    def simulated_line_number(self) -> int:
        return author_line_number(self.simulated_index)


class NewReleaseChecker(BaseChecker):
    """Slot-scheduled author search for not-yet-released Kindle books."""

    checker_id = "new-release-checker"
    metrics_name = "NewReleaseChecker"

    def run(self, **options: Any) -> None:
        cfg = self.configs.new_release_checker
        if not cfg.enabled and is_lambda():
            self.logger.info("NewReleaseChecker is disabled, skipping")
            return

        authors = self.store.load_authors(self.env.authors_key)
        if not authors:
            self.logger.info("No authors found")
            return

        decision = process_slot(
            self.store,
            self.env.prev_index_new_release_key,
            len(authors),
            cfg.cycle_days,
            now=self.clock(),
        )
        if not decision.should_process:
            return

        self.logger.info(
            "Processing slot (%04d / %04d): %s, next execution: %s",
            decision.index + 1,
            len(authors),
            authors[decision.index].name,
            decision.next_execution.isoformat(),
        )
        try:
            self.check_author(authors, decision.index, cfg)
        except Exception:
            self.metrics.put("SlotFailure")
            raise
        self.metrics.put("SlotSuccess")

    def check_author(
        self,
        authors: list[Author],
        index: int,
        cfg: SlotCheckerConfig,
    ) -> list[KindleBook]:
        """Search ``authors[index]`` and announce new releases.

        Returns:
            The newly announced books.

        Raises:
            CheckerError: empty author name, failed search or no hits.
        """
        author = authors[index]
        if not author.name:
            raise CheckerError(
                f"empty name found in author at index {index}: "
                f"URL={author.url}"
            )

        now = self.clock()
        notified_asins = {
            b.asin
            for b in self.store.load_books(self.env.notified_key)
            if b.release_date is not None and b.release_date > now
        }
        keywords = self.store.load_keywords(
            self.env.excluded_title_keywords_key
        )

        try:
            items = self.search_author_books(author.name, cfg)
        except (LookupApiError, RetryExhaustedError) as exc:
            self.metrics.put("APIFailure")
            raise CheckerError(
                format_author_error(index, authors, exc)
            ) from exc
        self.metrics.put("APISuccess")
        if not items:
            raise CheckerError(
                format_author_error(
                    index, authors, "no search results found"
                )
            )

        latest_before = author.latest_release_date
        new_books: list[KindleBook] = []
        for item in items:
            if should_skip_release(
                item, author, notified_asins, keywords, now
            ):
                continue
            self.notifier.notify(format_new_release_message(item, author))
            notified_asins.add(item.asin)
            new_books.append(item.to_book())

        move_books(
            self.store,
            new_books,
            None,
            [self.env.notified_key, self.env.upcoming_key],
        )

        if author.latest_release_date != latest_before:
            self.logger.info(
                "Latest release of %s is now %s",
                author.name,
                author.latest_release_title,
            )
            ordered = sort_unique_authors(authors)
            self.store.save_authors(self.env.authors_key, ordered)
            self.gist.update(
                cfg.gist_id,
                cfg.gist_filename,
                render_authors_markdown(ordered),
            )
        return new_books

    def search_author_books(
        self, name: str, cfg: SlotCheckerConfig,
    ) -> list[ApiItem]:
        caller = self.retrying_caller(
            cfg.search_items_retry_count,
            cfg.search_items_initial_retry_seconds,
        )
        query = SearchQuery(field="Author", value=name)
        return caller.call(
            lambda: self.client.search_items(query),
            operation="SearchItems",
        )

    # ── Planning ─────────────────────────────────────────

    def next_target(self) -> NextTarget | None:
        """Describe the upcoming slot without claiming it."""
        cfg = self.configs.new_release_checker
        authors = self.store.load_authors(self.env.authors_key)
        if not authors:
            return None

        now = self.clock()
        total = len(authors)
        index = due_index(now, total, cfg.cycle_days)
        simulated = due_index(now, total + 1, cfg.cycle_days)
        return NextTarget(
            index=index,
            total=total,
            author_name=authors[index].name,
            line_number=author_line_number(index),
            next_execution=next_execution_time(
                now, total, cfg.cycle_days
            ),
            simulated_index=simulated,
            simulated_name=(
                authors[simulated].name if simulated < total else ""
            ),
        )
