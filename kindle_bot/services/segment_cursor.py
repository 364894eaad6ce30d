# kindle_bot/services/segment_cursor.py

"""Fixed-window scheduling with a persisted offset."""

import logging
from dataclasses import dataclass

from kindle_bot.config.settings import Settings
from kindle_bot.storage.collection_store import CollectionStore

logger = logging.getLogger("kindle_bot.scheduler")


@dataclass(frozen=True)
class Segment:
    """Half-open range ``[start, end)`` of collection positions."""

    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start


class SegmentedCursorAdvancer:
    """Walks a collection ``window_size`` items per run.

    The cursor advances by the number of items actually processed, so
    items whose lookup failed are retried by the next run.
    """

    def __init__(
        self,
        store: CollectionStore,
        cursor_key: str,
        window_size: int = Settings.SEGMENT_SIZE,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self.store = store
        self.cursor_key = cursor_key
        self.window_size = window_size

    def plan(self, n: int) -> Segment:
        """Return this run's segment of an ``n``-item collection."""
        if n <= 0:
            return Segment(0, 0)
        start, _ = self.store.read_cursor(self.cursor_key)
        if start is None or not 0 <= start < n:
            if start is not None:
                logger.info(
                    "Cursor %d outside [0, %d), wrapping to 0", start, n
                )
            start = 0
        end = min(start + self.window_size, n)
        logger.info(
            "Processing items %d-%d of %d (segment size: %d)",
            start + 1,
            end,
            n,
            end - start,
        )
        return Segment(start, end)

    def advance(self, segment: Segment, processed_count: int) -> int:
        """Persist ``start + processed_count`` and return it."""
        if not 0 <= processed_count <= len(segment):
            raise ValueError(
                f"processed_count {processed_count} outside "
                f"[0, {len(segment)}]"
            )
        new_start = segment.start + processed_count
        self.store.write_cursor(self.cursor_key, new_start)
        return new_start
