# kindle_bot/services/slot_selector.py

"""Time-sliced scheduling of a collection across short invocations.

A cycle of ``cycle_days`` is cut into ``n`` equal, contiguous windows,
one per collection position. Whichever invocation first lands inside a
window handles that position; the persisted cursor tells later
invocations in the same window to stand down.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from kindle_bot.storage.blob_store import BlobConflictError
from kindle_bot.storage.collection_store import CollectionStore

logger = logging.getLogger("kindle_bot.scheduler")

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class SlotDecision:
    """Result of asking whether this invocation owns the current slot."""

    index: int
    should_process: bool
    next_execution: datetime


def _cycle_seconds(cycle_days: float) -> int:
    seconds = int(cycle_days * SECONDS_PER_DAY)
    if cycle_days <= 0 or seconds <= 0:
        raise ValueError(f"cycle_days must be > 0, got {cycle_days}")
    return seconds


def _check_size(n: int) -> None:
    if n <= 0:
        raise ValueError(f"collection size must be > 0, got {n}")


def _epoch_seconds(now: datetime | float | None) -> int:
    if now is None:
        return int(time.time())
    if isinstance(now, datetime):
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return int(now.timestamp())
    return int(now)


def due_index(
    now: datetime | float | None, n: int, cycle_days: float,
) -> int:
    """Collection position whose window contains *now*.

    ``floor((now mod cycle) * n / cycle)`` in whole seconds, so the
    result is always in ``[0, n)``.
    """
    _check_size(n)
    cycle = _cycle_seconds(cycle_days)
    seconds_into_cycle = _epoch_seconds(now) % cycle
    return seconds_into_cycle * n // cycle


def window_bounds(
    index: int, n: int, cycle_days: float,
) -> tuple[int, int]:
    """``[start, end)`` in seconds-into-cycle for slot *index*."""
    _check_size(n)
    if not 0 <= index < n:
        raise ValueError(f"index {index} outside [0, {n})")
    cycle = _cycle_seconds(cycle_days)
    # ceil(i * cycle / n) is the first second mapping to slot i
    start = -(-index * cycle // n)
    end = -(-(index + 1) * cycle // n)
    return start, end


def next_execution_time(
    now: datetime | float | None, n: int, cycle_days: float,
) -> datetime:
    """When the slot after the current one begins."""
    epoch = _epoch_seconds(now)
    cycle = _cycle_seconds(cycle_days)
    index = due_index(epoch, n, cycle_days)
    _, end = window_bounds(index, n, cycle_days)
    cycle_start = epoch - epoch % cycle
    return datetime.fromtimestamp(cycle_start + end, tz=timezone.utc)


class CursorGate:
    """Compare-then-write guard over the persisted slot cursor.

    This is not a lock. Two invocations racing inside one window before
    either write lands may both proceed; the conditional write only
    narrows that gap.
    """

    def __init__(self, store: CollectionStore, cursor_key: str) -> None:
        self.store = store
        self.cursor_key = cursor_key

    def decide(self, index: int) -> bool:
        """Persist *index* unless it is already the recorded cursor.

        Returns:
            ``True`` if this invocation should process the slot.
        """
        previous, etag = self.store.read_cursor(self.cursor_key)
        if previous == index:
            return False
        try:
            self.store.write_cursor(
                self.cursor_key, index, etag, conditional=True
            )
        except BlobConflictError:
            logger.info(
                "Cursor %s changed concurrently, slot %d already "
                "claimed",
                self.cursor_key,
                index,
            )
            return False
        logger.debug(
            "Cursor %s advanced %s -> %d",
            self.cursor_key,
            previous,
            index,
        )
        return True


def process_slot(
    store: CollectionStore,
    cursor_key: str,
    n: int,
    cycle_days: float,
    now: datetime | float | None = None,
) -> SlotDecision:
    """Pick the due slot and claim it through the cursor.

    The cursor is written before any expensive work so that a crash
    mid-run still moves on instead of retrying a poison item forever.

    Raises:
        ValueError: ``n`` or ``cycle_days`` is not positive.
    """
    epoch = _epoch_seconds(now)
    index = due_index(epoch, n, cycle_days)
    next_execution = next_execution_time(epoch, n, cycle_days)

    if not CursorGate(store, cursor_key).decide(index):
        logger.info(
            "Not my slot, skipping (%d / %d)", index + 1, n
        )
        return SlotDecision(index, False, next_execution)

    return SlotDecision(index, True, next_execution)
