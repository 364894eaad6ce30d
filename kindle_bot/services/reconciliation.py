# kindle_bot/services/reconciliation.py

"""Fold one run's per-item outcomes back into a persisted collection."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from kindle_bot.models.book import KindleBook, canonicalize
from kindle_bot.storage.collection_store import (
    CollectionStore,
    same_books,
)

logger = logging.getLogger("kindle_bot.reconciliation")


class Outcome(Enum):
    """What happened to one item of the work unit."""

    UNCHANGED = "unchanged"
    UPDATED = "updated"
    REMOVED = "removed"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemOutcome:
    """Outcome for a single ASIN; ``book`` is required for UPDATED."""

    asin: str
    outcome: Outcome
    book: KindleBook | None = None

    def __post_init__(self) -> None:
        if self.outcome is Outcome.UPDATED and self.book is None:
            raise ValueError(f"UPDATED outcome for {self.asin} needs a book")


@dataclass
class MergeResult:
    """The reconciled collection and a summary of what moved."""

    books: list[KindleBook]
    changed: bool
    updated: list[str] = field(default_factory=lambda: list[str]())
    removed: list[str] = field(default_factory=lambda: list[str]())


def _updated_book(old: KindleBook, new: KindleBook) -> KindleBook:
    """Substitute *new* while keeping the historical maximum price."""
    return replace(
        new,
        max_price=max(old.max_price, new.max_price, new.current_price),
    )


class ReconciliationMerger:
    """Builds the next version of a collection from a run's outcomes."""

    @staticmethod
    def merge(
        original: list[KindleBook],
        work_unit: Iterable[str],
        outcomes: Iterable[ItemOutcome],
    ) -> MergeResult:
        """Apply *outcomes* for the ASINs in *work_unit*.

        Items outside the work unit, and work-unit items that failed or
        have no outcome, are kept as they were. Removed items are
        dropped, updated items substituted. The result is de-duplicated
        and canonically sorted; ``changed`` is false when it serialises
        identically to *original*.
        """
        unit = set(work_unit)
        by_asin: dict[str, ItemOutcome] = {}
        for item in outcomes:
            if item.asin in unit:
                by_asin[item.asin] = item

        merged: list[KindleBook] = []
        updated: list[str] = []
        removed: list[str] = []
        for book in original:
            result = by_asin.get(book.asin)
            if result is None or book.asin not in unit:
                merged.append(book)
            elif result.outcome is Outcome.REMOVED:
                if book.asin not in removed:
                    removed.append(book.asin)
            elif result.outcome is Outcome.UPDATED:
                assert result.book is not None
                merged.append(_updated_book(book, result.book))
                if book.asin not in updated:
                    updated.append(book.asin)
            else:
                merged.append(book)

        books = canonicalize(merged)
        changed = not same_books(original, books)
        logger.debug(
            "Merged %d outcomes: %d updated, %d removed, changed=%s",
            len(by_asin),
            len(updated),
            len(removed),
            changed,
        )
        return MergeResult(
            books=books,
            changed=changed,
            updated=updated,
            removed=removed,
        )


def log_book_changes(
    original: list[KindleBook], updated: list[KindleBook],
) -> None:
    """Log every field that differs between matching ASINs."""
    old_by_asin = {b.asin: b for b in original}
    for new in updated:
        old = old_by_asin.get(new.asin)
        if old is None:
            continue
        for name, before, after in old.changed_fields(new):
            logger.info(
                "[%s] %s - %s changed: %s -> %s",
                new.asin,
                new.title,
                name,
                before,
                after,
            )


def move_books(
    store: CollectionStore,
    books: list[KindleBook],
    source_key: str | None,
    destination_keys: list[str],
) -> None:
    """Add *books* to every destination, then drop them from the source.

    Destinations are written first. A crash between the writes can
    leave a book in both source and destination; readers de-duplicate
    by ASIN.
    """
    if not books:
        return
    for key in destination_keys:
        current = store.load_books(key)
        store.save_books(key, current + books, original=current)

    if source_key is None:
        return
    asins = {b.asin for b in books}
    source = store.load_books(source_key)
    remaining = [b for b in source if b.asin not in asins]
    store.save_books(source_key, remaining, original=source)
