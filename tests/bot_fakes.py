# tests/bot_fakes.py

"""In-memory stand-ins shared by the checker tests."""

import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

from kindle_bot.api.paapi_client import ApiItem, SearchQuery
from kindle_bot.config.settings import EnvConfig
from kindle_bot.models.book import KindleBook
from kindle_bot.services.metrics import MetricsSink
from kindle_bot.services.notifier import GistPublisher, Notifier
from kindle_bot.storage.blob_store import LocalBlobStore
from kindle_bot.storage.collection_store import CollectionStore


def utc(*args: int) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=timezone.utc)


def make_book(
    asin: str,
    title: str = "",
    release: datetime | None = None,
    price: float = 0.0,
    max_price: float = 0.0,
) -> KindleBook:
    return KindleBook(
        asin=asin,
        title=title or f"Title {asin}",
        release_date=release,
        current_price=price,
        max_price=max_price or price,
        url=f"https://www.amazon.co.jp/dp/{asin}",
    )


def make_item(
    asin: str,
    title: str = "",
    binding: str = "Kindle版",
    release: datetime | None = None,
    price: float | None = 500.0,
    points: int = 0,
    contributors: list[str] | None = None,
) -> ApiItem:
    return ApiItem(
        asin=asin,
        title=title or f"Title {asin}",
        binding=binding,
        release_date=release,
        price=price,
        points=points,
        url=f"https://www.amazon.co.jp/dp/{asin}?tag=test-22",
        contributors=contributors or [],
    )


class RecordingMetrics(MetricsSink):
    """Keeps every metric name in order."""

    def __init__(self) -> None:
        self.names: list[str] = []

    def put(self, name: str) -> None:
        self.names.append(name)


class FakePaapiClient:
    """Serves items from dictionaries and records every call.

    ``errors`` is consumed first: each call pops one exception and
    raises it until the list is empty.
    """

    def __init__(
        self,
        catalog: dict[str, ApiItem] | None = None,
        search_results: dict[str, list[ApiItem]] | None = None,
    ) -> None:
        self.catalog = catalog or {}
        self.search_results = search_results or {}
        self.errors: list[Exception] = []
        self.get_calls: list[list[str]] = []
        self.search_calls: list[SearchQuery] = []

    def _maybe_fail(self) -> None:
        if self.errors:
            raise self.errors.pop(0)

    def get_items(self, asins: list[str]) -> list[ApiItem]:
        self.get_calls.append(list(asins))
        self._maybe_fail()
        return [self.catalog[a] for a in asins if a in self.catalog]

    def search_items(self, query: SearchQuery) -> list[ApiItem]:
        self.search_calls.append(query)
        self._maybe_fail()
        return list(self.search_results.get(query.value, []))


class CheckerTestMixin:
    """Temp-dir store, fake client and mocked sinks for a checker."""

    checker_cls: type = object

    def make_checker(
        self,
        client: FakePaapiClient,
        now: datetime,
    ) -> object:
        self.tmp_dir = Path(tempfile.mkdtemp())
        self.env = EnvConfig(local_storage_dir=self.tmp_dir)
        self.store = CollectionStore(LocalBlobStore(self.tmp_dir))
        self.notifier = MagicMock(spec=Notifier)
        self.gist = MagicMock(spec=GistPublisher)
        self.metrics = RecordingMetrics()
        self.now = now
        clock: Callable[[], datetime] = lambda: self.now
        return self.checker_cls(
            self.env,
            store=self.store,
            client=client,
            notifier=self.notifier,
            gist=self.gist,
            metrics=self.metrics,
            clock=clock,
        )

    def notified_messages(self) -> list[str]:
        return [c.args[0] for c in self.notifier.notify.call_args_list]
