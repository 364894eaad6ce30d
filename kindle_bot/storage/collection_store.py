# kindle_bot/storage/collection_store.py

"""Typed access to the persisted book lists, author list and cursors."""

import json
import logging
from typing import Any

from kindle_bot.config.checker_config import (
    CheckerConfigs,
    parse_checker_configs,
)
from kindle_bot.models.author import Author
from kindle_bot.models.book import KindleBook, canonicalize
from kindle_bot.storage.blob_store import BlobNotFoundError, BlobStore

logger = logging.getLogger("kindle_bot.storage")


def _dump(records: list[dict[str, Any]]) -> bytes:
    """Serialise records deterministically.

    The same input always yields the same bytes, which is what the
    skip-if-unchanged comparison relies on.
    """
    return json.dumps(
        records, ensure_ascii=False, indent=4
    ).encode("utf-8")


def serialize_books(books: list[KindleBook]) -> bytes:
    """Encode a collection as stored JSON bytes."""
    return _dump([b.to_dict() for b in books])


def deserialize_books(raw: bytes) -> list[KindleBook]:
    """Decode stored JSON bytes into a collection (order preserved)."""
    data = json.loads(raw or b"null")
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("Book collection must be a JSON array")
    return [KindleBook.from_dict(item) for item in data]


def serialize_authors(authors: list[Author]) -> bytes:
    """Encode the author list as stored JSON bytes."""
    return _dump([a.to_dict() for a in authors])


def deserialize_authors(raw: bytes) -> list[Author]:
    """Decode stored JSON bytes into an author list."""
    data = json.loads(raw or b"null")
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("Author list must be a JSON array")
    return [Author.from_dict(item) for item in data]


def same_books(a: list[KindleBook], b: list[KindleBook]) -> bool:
    """True when both collections serialise identically."""
    return serialize_books(a) == serialize_books(b)


class CollectionStore:
    """Whole-collection read / replace on top of a :class:`BlobStore`."""

    def __init__(self, blob_store: BlobStore) -> None:
        self.blobs = blob_store

    # ── Books ────────────────────────────────────────────

    def load_books(self, key: str) -> list[KindleBook]:
        """Read a collection; a missing key is an empty collection."""
        try:
            raw = self.blobs.get(key)
        except BlobNotFoundError:
            logger.warning("Collection %s not found, using empty", key)
            return []
        books = deserialize_books(raw)
        logger.debug("Loaded %d books from %s", len(books), key)
        return books

    def save_books(
        self,
        key: str,
        books: list[KindleBook],
        original: list[KindleBook] | None = None,
    ) -> bool:
        """Write a collection in canonical form.

        When *original* is given and the canonical result serialises
        identically to it, the write is skipped.

        Returns:
            ``True`` if the collection was written.
        """
        data = serialize_books(canonicalize(books))
        if original is not None and data == serialize_books(original):
            logger.info("No changes in %s, skipping write", key)
            return False
        self.blobs.put(key, data)
        logger.info("Saved %d books to %s", len(books), key)
        return True

    # ── Authors ──────────────────────────────────────────

    def load_authors(self, key: str) -> list[Author]:
        """Read the author list."""
        return deserialize_authors(self.blobs.get(key))

    def save_authors(self, key: str, authors: list[Author]) -> None:
        """Replace the author list (caller supplies the order)."""
        self.blobs.put(key, serialize_authors(authors))
        logger.info("Saved %d authors to %s", len(authors), key)

    # ── Misc documents ───────────────────────────────────

    def load_keywords(self, key: str) -> list[str]:
        """Read a JSON array of strings; missing key means none."""
        try:
            raw = self.blobs.get(key)
        except BlobNotFoundError:
            return []
        data = json.loads(raw or b"null") or []
        return [str(k) for k in data if str(k)]

    def load_checker_configs(self, key: str) -> CheckerConfigs:
        """Read the checker tuning document, defaults if absent."""
        try:
            raw = self.blobs.get(key)
        except BlobNotFoundError:
            logger.warning(
                "Checker config %s not found, using defaults", key
            )
            return CheckerConfigs()
        return parse_checker_configs(raw)

    # ── Cursors ──────────────────────────────────────────

    def read_cursor(self, key: str) -> tuple[int | None, str | None]:
        """Return ``(value, etag)``; value is ``None`` when unreadable.

        A missing key yields ``(None, None)`` so that a conditional
        first write can use "create only".
        """
        try:
            raw, etag = self.blobs.get_versioned(key)
        except BlobNotFoundError:
            return None, None
        try:
            return int(raw.decode("utf-8").strip()), etag
        except ValueError:
            logger.warning("Cursor %s is not an integer: %r", key, raw)
            return None, etag

    def write_cursor(
        self,
        key: str,
        value: int,
        expected_etag: str | None = None,
        conditional: bool = False,
    ) -> None:
        """Persist a cursor value.

        With ``conditional=True`` the write only succeeds if the cursor
        still carries *expected_etag* (``None`` meaning "absent").

        Raises:
            BlobConflictError: another run wrote the cursor first.
        """
        data = str(value).encode("utf-8")
        if conditional:
            self.blobs.put_if_match(key, data, expected_etag)
        else:
            self.blobs.put(key, data)
        logger.debug("Cursor %s <- %d", key, value)
