# kindle_bot/checkers/sale_checker.py

"""Segmented sale and price watcher over the unprocessed list."""

from typing import Any

from kindle_bot.api.errors import LookupApiError, PartialBatchError
from kindle_bot.api.paapi_client import ApiItem
from kindle_bot.checkers.base_checker import BaseChecker
from kindle_bot.checkers.rules import (
    check_price_change,
    extract_sale_conditions,
    format_sale_message,
    is_execution_minute,
    is_kindle,
)
from kindle_bot.config.checker_config import SaleCheckerConfig
from kindle_bot.config.settings import is_lambda
from kindle_bot.models.book import (
    KindleBook,
    canonicalize,
    chunked_asins,
    find_book,
    unique_books,
)
from kindle_bot.services.notifier import render_books_markdown
from kindle_bot.services.reconciliation import (
    ItemOutcome,
    Outcome,
    ReconciliationMerger,
    log_book_changes,
)
from kindle_bot.services.retry import RetryExhaustedError
from kindle_bot.services.segment_cursor import SegmentedCursorAdvancer
from kindle_bot.storage.collection_store import same_books


class SaleChecker(BaseChecker):
    """Looks up ten books per run and announces sales.

    A book on sale is announced and dropped from the list; other books
    get their price refreshed. Books announced by the new-release
    checker (the upcoming list) are folded into the list first.
    """

    checker_id = "sale-checker"
    metrics_name = "SaleChecker"

    def run(self, organize: bool = False, **options: Any) -> None:
        cfg = self.configs.sale_checker
        if organize:
            self.organize()
            return

        if is_lambda():
            if not cfg.enabled:
                self.logger.info("SaleChecker is disabled, skipping")
                return
            now = self.clock()
            if not is_execution_minute(
                now, cfg.execution_interval_minutes
            ):
                self.logger.info(
                    "Skipping: minute %d is not a multiple of %d",
                    now.minute,
                    cfg.execution_interval_minutes,
                )
                return

        original = self.store.load_books(self.env.unprocessed_key)
        upcoming = self.store.load_books(self.env.upcoming_key)
        all_books = unique_books(original + upcoming)

        advancer = SegmentedCursorAdvancer(
            self.store,
            self.env.prev_index_sale_checker_key,
            cfg.segment_size,
        )
        segment = advancer.plan(len(all_books))
        if not len(segment):
            self.logger.info("No books to check")
            return

        segment_books = all_books[segment.start:segment.end]
        for offset, book in enumerate(segment_books):
            self.logger.debug(
                "[Queue] %d/%d: %s | %s | %s",
                segment.start + offset + 1,
                len(all_books),
                book.release_label,
                book.title,
                book.url,
            )

        outcomes, failure = self.check_books(segment_books, cfg)
        processed = sum(
            1
            for o in outcomes
            if o.outcome in (Outcome.UNCHANGED, Outcome.UPDATED)
        )
        if processed:
            advancer.advance(segment, processed)

        result = ReconciliationMerger.merge(
            all_books, [b.asin for b in segment_books], outcomes
        )
        self.write_back(original, upcoming, result.books, cfg)

        # Raised after the write-back so completed batches are kept
        if failure is not None:
            raise failure

    def write_back(
        self,
        original: list[KindleBook],
        upcoming: list[KindleBook],
        books: list[KindleBook],
        cfg: SaleCheckerConfig,
    ) -> None:
        """Persist the merged list, the Gist and the cleared upcoming list."""
        if same_books(original, books):
            self.logger.info("No changes in book data, skipping writes")
            return

        log_book_changes(original, books)
        self.store.save_books(
            self.env.unprocessed_key, books, original=original
        )
        self.gist.update(
            cfg.gist_id,
            cfg.gist_filename,
            render_books_markdown(books),
        )
        self.clear_upcoming_if_unchanged(upcoming)

    # ── Lookups ──────────────────────────────────────────

    def check_books(
        self, books: list[KindleBook], cfg: SaleCheckerConfig,
    ) -> tuple[list[ItemOutcome], Exception | None]:
        """Look up *books* and classify each one.

        A batch whose lookup fails marks its books FAILED and the
        remaining batches still run.

        Returns:
            The outcomes and the first batch failure, if any.
        """
        caller = self.retrying_caller(
            cfg.get_items_retry_count,
            cfg.get_items_initial_retry_seconds,
        )
        outcomes: list[ItemOutcome] = []
        failure: Exception | None = None

        valid: list[KindleBook] = []
        for book in books:
            if not book.asin:
                self.notifier.alert(
                    f"empty ASIN found in book: Title={book.title}, "
                    f"URL={book.url}"
                )
                outcomes.append(ItemOutcome(book.asin, Outcome.REMOVED))
                continue
            valid.append(book)

        for asins in chunked_asins(
            valid, self.settings.GET_ITEMS_BATCH_LIMIT
        ):
            try:
                items = caller.call(
                    lambda asins=asins: self.client.get_items(asins),
                    operation="GetItems",
                )
            except (LookupApiError, RetryExhaustedError) as exc:
                self.metrics.put("APIFailure")
                self.logger.error(
                    "GetItems failed for %s: %s", ", ".join(asins), exc
                )
                outcomes.extend(
                    ItemOutcome(a, Outcome.FAILED) for a in asins
                )
                if failure is None:
                    failure = exc
                continue
            self.metrics.put("APISuccess")

            returned = {item.asin for item in items}
            missing = [a for a in asins if a not in returned]
            if missing:
                self.notifier.alert(
                    PartialBatchError(asins, missing, len(items))
                )
                outcomes.extend(
                    ItemOutcome(a, Outcome.FAILED) for a in missing
                )

            for item in items:
                book = find_book(item.asin, valid)
                if book is None:
                    self.logger.warning(
                        "Unrequested ASIN in response: %s", item.asin
                    )
                    continue
                outcomes.append(self.check_item(book, item, cfg))
        return outcomes, failure

    def check_item(
        self, book: KindleBook, item: ApiItem, cfg: SaleCheckerConfig,
    ) -> ItemOutcome:
        """Decide what one looked-up book means for the list."""
        if not is_kindle(item):
            self.notifier.alert(
                f"the item category is not a {self.settings.KINDLE_BINDING}.\n"
                f"ASIN: {item.asin}\nTitle: {item.title}\n"
                f"Category: {item.binding}\nURL: {item.url}"
            )
            return ItemOutcome(book.asin, Outcome.REMOVED)

        if item.price is None:
            self.notifier.alert(
                f"price information not available for item.\n"
                f"ASIN: {item.asin}\nTitle: {item.title}\n"
                f"URL: {item.url}"
            )
            return ItemOutcome(book.asin, Outcome.UNCHANGED)

        max_price = max(book.max_price, item.price)
        conditions = extract_sale_conditions(item, max_price, cfg)
        if conditions:
            self.notifier.notify(format_sale_message(item, conditions))
            return ItemOutcome(book.asin, Outcome.REMOVED)

        updated = item.to_book(max_price)
        message = check_price_change(
            book, updated, cfg.price_change_amount
        )
        if message:
            self.notifier.notify(message)
        return ItemOutcome(book.asin, Outcome.UPDATED, updated)

    # ── Housekeeping ─────────────────────────────────────

    def clear_upcoming_if_unchanged(
        self, upcoming: list[KindleBook],
    ) -> None:
        """Empty the upcoming list unless it grew since it was read."""
        current = self.store.load_books(self.env.upcoming_key)
        if not same_books(upcoming, current):
            self.logger.info(
                "Upcoming list changed during the run (%d -> %d), "
                "not clearing",
                len(upcoming),
                len(current),
            )
            return
        if current:
            self.store.save_books(self.env.upcoming_key, [])
            self.logger.info("Cleared %d upcoming books", len(current))

    def organize(self) -> int:
        """De-duplicate and re-sort the unprocessed list.

        Returns:
            Number of books in the organised list.
        """
        cfg = self.configs.sale_checker
        original = self.store.load_books(self.env.unprocessed_key)
        if not original:
            self.logger.info("No books found")
            return 0

        books = canonicalize(original)
        if self.store.save_books(
            self.env.unprocessed_key, books, original=original
        ):
            self.gist.update(
                cfg.gist_id,
                cfg.gist_filename,
                render_books_markdown(books),
            )
        self.logger.info("Organized %d books", len(books))
        return len(books)
