# kindle_bot/models/book.py

"""Book edition data model and collection helpers."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

# Stored lists use Go's zero time for "no release date"
ZERO_DATE = "0001-01-01T00:00:00Z"


def format_date(value: datetime | None) -> str:
    """Serialise a release date as an RFC 3339 UTC timestamp."""
    if value is None:
        return ZERO_DATE
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}"
    return text + "Z"


def parse_date(raw: Any) -> datetime | None:
    """Parse a stored release date; the zero time maps to ``None``."""
    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.startswith("0001-01-01"):
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class KindleBook:
    """A single edition tracked in a persisted collection."""

    asin: str
    title: str = ""
    release_date: datetime | None = None
    current_price: float = 0.0
    max_price: float = 0.0
    url: str = ""

    # Explicit list so comparison stays exhaustive without reflection
    COMPARED_FIELDS = (
        "asin",
        "title",
        "release_date",
        "current_price",
        "max_price",
        "url",
    )

    def to_dict(self) -> dict[str, Any]:
        """Return the stored JSON representation."""
        return {
            "ASIN": self.asin,
            "Title": self.title,
            "ReleaseDate": format_date(self.release_date),
            "CurrentPrice": float(self.current_price),
            "MaxPrice": float(self.max_price),
            "URL": self.url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "KindleBook":
        """Build a book from its stored JSON representation."""
        return cls(
            asin=str(data.get("ASIN", "") or ""),
            title=str(data.get("Title", "") or ""),
            release_date=parse_date(data.get("ReleaseDate")),
            current_price=float(data.get("CurrentPrice", 0) or 0),
            max_price=float(data.get("MaxPrice", 0) or 0),
            url=str(data.get("URL", "") or ""),
        )

    def changed_fields(
        self, other: "KindleBook",
    ) -> list[tuple[str, object, object]]:
        """List ``(field, old, new)`` for every field that differs."""
        changes: list[tuple[str, object, object]] = []
        for name in self.COMPARED_FIELDS:
            old = getattr(self, name)
            new = getattr(other, name)
            if name == "release_date":
                old, new = format_date(old), format_date(new)
            if old != new:
                changes.append((name, old, new))
        return changes

    @property
    def release_label(self) -> str:
        """Release date as ``YYYY-MM-DD`` (blank when unknown)."""
        if self.release_date is None:
            return ""
        return self.release_date.strftime("%Y-%m-%d")


def _sort_key(book: KindleBook) -> tuple[int, float, str]:
    if book.release_date is None:
        return (1, 0.0, book.title)
    return (0, -book.release_date.timestamp(), book.title)


def sort_books(books: Iterable[KindleBook]) -> list[KindleBook]:
    """Canonical order: newest release first, ties by title.

    Books without a release date go last.
    """
    return sorted(books, key=_sort_key)


def unique_books(books: Iterable[KindleBook]) -> list[KindleBook]:
    """Drop repeated ASINs, keeping the first occurrence."""
    seen: set[str] = set()
    result: list[KindleBook] = []
    for book in books:
        if book.asin in seen:
            continue
        seen.add(book.asin)
        result.append(book)
    return result


def canonicalize(books: Iterable[KindleBook]) -> list[KindleBook]:
    """De-duplicate by ASIN, then apply the canonical order."""
    return sort_books(unique_books(books))


def find_book(
    asin: str, books: Iterable[KindleBook],
) -> KindleBook | None:
    """Return the first book with *asin*, or ``None``."""
    for book in books:
        if book.asin == asin:
            return book
    return None


def chunked_asins(
    books: list[KindleBook], size: int,
) -> list[list[str]]:
    """Split the ASINs of *books* into request-sized chunks."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [
        [b.asin for b in books[i:i + size]]
        for i in range(0, len(books), size)
    ]


def detail_url(asin: str) -> str:
    """Human-readable product page for manual inspection."""
    return f"https://www.amazon.co.jp/dp/{asin}"
