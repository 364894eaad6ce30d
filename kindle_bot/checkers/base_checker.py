# kindle_bot/checkers/base_checker.py

"""Abstract base class for all checkers."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from kindle_bot.api.paapi_client import PaapiClient
from kindle_bot.config.checker_config import CheckerConfigs
from kindle_bot.config.settings import EnvConfig, Settings
from kindle_bot.services.metrics import CloudWatchMetrics, MetricsSink
from kindle_bot.services.notifier import GistPublisher, Notifier
from kindle_bot.services.retry import RetryingCaller, RetryPolicy
from kindle_bot.storage.blob_store import create_blob_store
from kindle_bot.storage.collection_store import CollectionStore


class CheckerError(Exception):
    """A checker could not finish its work unit."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseChecker(ABC):
    """Wires one checker to its store, API client and sinks.

    Every collaborator can be injected; anything left out is built
    from the :class:`EnvConfig`.
    """

    # Sub-command id, e.g. "sale-checker"
    checker_id: str = ""
    # CloudWatch namespace suffix, e.g. "SaleChecker"
    metrics_name: str = ""

    def __init__(
        self,
        env: EnvConfig,
        store: CollectionStore | None = None,
        client: PaapiClient | None = None,
        notifier: Notifier | None = None,
        gist: GistPublisher | None = None,
        metrics: MetricsSink | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.env = env
        self.settings = Settings()
        self.logger = logging.getLogger(
            f"kindle_bot.{self.checker_id}"
        )
        self.store = store or CollectionStore(create_blob_store(env))
        self.client = client or PaapiClient.from_config(env)
        self.notifier = notifier or Notifier(env, self.checker_id)
        self.gist = gist or GistPublisher(env.github_token)
        if metrics is None:
            metrics = (
                CloudWatchMetrics(
                    f"KindleBot/{self.metrics_name}", env.s3_region
                )
                if env.metrics_enabled
                else MetricsSink()
            )
        self.metrics = metrics
        self.clock = clock
        self.configs = CheckerConfigs()

    def retrying_caller(
        self, max_attempts: int, initial_backoff: float,
    ) -> RetryingCaller:
        """Caller for one API call site, sharing this checker's metrics."""
        policy = RetryPolicy(
            max_attempts=max_attempts,
            initial_backoff=initial_backoff,
        )
        return RetryingCaller(policy, metrics=self.metrics)

    def load_configs(self) -> CheckerConfigs:
        self.configs = self.store.load_checker_configs(
            self.env.checker_config_key
        )
        return self.configs

    def execute(self, **options: Any) -> None:
        """Run the checker, alerting before re-raising any failure."""
        self.load_configs()
        try:
            self.run(**options)
        except Exception as exc:
            self.logger.error(
                "%s failed: %s", self.checker_id, exc, exc_info=True
            )
            if self.configs.report_failure:
                self.notifier.alert(exc)
            raise

    @abstractmethod
    def run(self, **options: Any) -> None:
        """Perform one invocation's worth of work."""
        ...
