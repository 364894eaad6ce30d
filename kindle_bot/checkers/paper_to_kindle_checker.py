# kindle_bot/checkers/paper_to_kindle_checker.py

"""Finds Kindle editions of watched paper books, one book per slot."""

from typing import Any

from kindle_bot.api.errors import ItemNotFoundError, LookupApiError
from kindle_bot.api.paapi_client import ApiItem, SearchQuery
from kindle_bot.checkers.base_checker import BaseChecker, CheckerError
from kindle_bot.checkers.rules import (
    clean_title,
    format_paper_to_kindle_message,
    format_process_error,
    is_same_kindle_book,
    kindle_search_max_price,
)
from kindle_bot.config.checker_config import SlotCheckerConfig
from kindle_bot.config.settings import is_lambda
from kindle_bot.models.book import KindleBook
from kindle_bot.services.reconciliation import move_books
from kindle_bot.services.retry import RetryExhaustedError
from kindle_bot.services.slot_selector import process_slot


class PaperToKindleChecker(BaseChecker):
    """Slot-scheduled search for Kindle editions of paper books.

    When a Kindle edition released on the paper book's date turns up,
    it is announced and moved into the unprocessed and notified lists,
    and the paper book is dropped from the watch list.
    """

    checker_id = "paper-to-kindle-checker"
    metrics_name = "PaperToKindleChecker"

    def run(self, **options: Any) -> None:
        cfg = self.configs.paper_to_kindle_checker
        if not cfg.enabled and is_lambda():
            self.logger.info("PaperToKindleChecker is disabled, skipping")
            return

        books = self.store.load_books(self.env.paper_books_key)
        if not books:
            self.logger.info("No paper books available")
            return

        decision = process_slot(
            self.store,
            self.env.prev_index_paper_to_kindle_key,
            len(books),
            cfg.cycle_days,
            now=self.clock(),
        )
        if not decision.should_process:
            return

        index = decision.index
        self.logger.info(
            "%03d / %03d: %s, next execution: %s",
            index + 1,
            len(books),
            books[index].title,
            decision.next_execution.isoformat(),
        )
        try:
            self.check_paper_book(books, index, cfg)
        except Exception:
            self.metrics.put("SlotFailure")
            raise
        self.metrics.put("SlotSuccess")

    def _lookup_failed(
        self,
        operation: str,
        books: list[KindleBook],
        index: int,
        exc: Exception,
    ) -> CheckerError:
        self.metrics.put("APIFailure")
        return CheckerError(
            format_process_error(
                operation, index, len(books), books[index].asin, exc
            )
        )

    def check_paper_book(
        self,
        books: list[KindleBook],
        index: int,
        cfg: SlotCheckerConfig,
    ) -> None:
        """Search a Kindle edition for ``books[index]`` and reconcile.

        Raises:
            CheckerError: a lookup failed; the message names the slot.
        """
        book = books[index]

        if not book.title:
            caller = self.retrying_caller(
                cfg.get_items_retry_count,
                cfg.get_items_initial_retry_seconds,
            )
            try:
                items = caller.call(
                    lambda: self.client.get_items([book.asin]),
                    operation="GetItems",
                )
            except ItemNotFoundError:
                self.logger.warning("No item found for ASIN: %s", book.asin)
                return
            except (LookupApiError, RetryExhaustedError) as exc:
                raise self._lookup_failed(
                    "getItems", books, index, exc
                ) from exc
            self.metrics.put("APISuccess")
            if not items:
                self.logger.warning("No item found for ASIN: %s", book.asin)
                return
            book = items[0].to_book()

        try:
            kindle = self.search_kindle_edition(book, cfg)
        except (LookupApiError, RetryExhaustedError) as exc:
            raise self._lookup_failed(
                "searchKindleEdition", books, index, exc
            ) from exc
        self.metrics.put("APISuccess")

        remaining = [b for i, b in enumerate(books) if i != index]
        if kindle is None:
            remaining.append(book)
        else:
            self.notifier.notify(
                format_paper_to_kindle_message(book, kindle)
            )
            move_books(
                self.store,
                [kindle.to_book()],
                None,
                [self.env.unprocessed_key, self.env.notified_key],
            )

        self.store.save_books(
            self.env.paper_books_key, remaining, original=books
        )

    def search_kindle_edition(
        self, paper: KindleBook, cfg: SlotCheckerConfig,
    ) -> ApiItem | None:
        """First search hit that is the Kindle edition of *paper*."""
        caller = self.retrying_caller(
            cfg.search_items_retry_count,
            cfg.search_items_initial_retry_seconds,
        )
        query = SearchQuery(
            field="Title",
            value=clean_title(paper.title),
            max_price=kindle_search_max_price(paper),
        )
        items = caller.call(
            lambda: self.client.search_items(query),
            operation="SearchItems",
        )
        for item in items:
            if is_same_kindle_book(paper, item):
                return item
        return None
