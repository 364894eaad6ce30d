# kindle_bot/services/retry.py

"""Bounded retry with exponential backoff and jitter.

Every call to the lookup API goes through :class:`RetryingCaller`.
Failures are classified as retryable or fatal by the policy's
classifier; fatal errors surface after a single attempt, retryable ones
are retried until the attempt budget runs out.
"""

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from kindle_bot.api.errors import ErrorKind, classify_error
from kindle_bot.config.settings import Settings
from kindle_bot.services.metrics import MetricsSink

logger = logging.getLogger("kindle_bot.retry")

T = TypeVar("T")

# 2**62 seconds is already far beyond any cap
_MAX_EXPONENT = 62


class RetryExhaustedError(Exception):
    """All attempts failed with retryable errors."""

    def __init__(
        self,
        operation: str,
        attempts: int,
        last_error: BaseException,
    ) -> None:
        super().__init__(
            f"{operation}: max retries reached after {attempts} "
            f"attempts: {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for one call site."""

    max_attempts: int = Settings.MAX_RETRIES
    initial_backoff: float = Settings.INITIAL_BACKOFF
    max_backoff: float = Settings.MAX_BACKOFF
    max_jitter: float = Settings.MAX_JITTER
    classify: Callable[[BaseException], ErrorKind] = field(
        default=classify_error
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff must not be negative")
        if self.max_jitter < 0:
            raise ValueError("max_jitter must not be negative")


def compute_backoff(
    attempt: int, policy: RetryPolicy, jitter: float = 0.0,
) -> float:
    """Delay after failed *attempt* (1-based), before the next one.

    ``initial_backoff * 2**(attempt-1) + jitter``, capped at
    ``max_backoff`` and never negative.
    """
    exponent = min(max(attempt - 1, 0), _MAX_EXPONENT)
    base = policy.initial_backoff * (2 ** exponent)
    delay = min(base + max(jitter, 0.0), policy.max_backoff)
    return max(delay, 0.0)


class RetryingCaller:
    """Runs a zero-argument remote call under a :class:`RetryPolicy`."""

    def __init__(
        self,
        policy: RetryPolicy,
        metrics: MetricsSink | None = None,
        sleep: Callable[[float], None] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy
        self.metrics = metrics or MetricsSink()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def _wait(self, seconds: float) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            time.sleep(seconds)

    def _emit(self, name: str) -> None:
        try:
            self.metrics.put(name)
        except Exception as exc:
            logger.warning("Metric %s not recorded: %s", name, exc)

    def _jitter(self) -> float:
        # random() is in [0, 1) so jitter stays below max_jitter
        return self._rng.random() * self.policy.max_jitter

    def call(
        self,
        fn: Callable[[], T],
        operation: str = "request",
    ) -> T:
        """Invoke *fn* until it succeeds or the budget is spent.

        Raises:
            RetryExhaustedError: every attempt failed retryably.
            Exception: the first fatal error, unchanged.
        """
        max_attempts = self.policy.max_attempts
        last_error: BaseException | None = None

        for attempt in range(1, max_attempts + 1):
            self._emit("Attempt")
            try:
                result = fn()
            except Exception as exc:
                last_error = exc
                self._emit("Failure")
                if self.policy.classify(exc) is ErrorKind.FATAL:
                    logger.error(
                        "%s failed with fatal error on attempt %d: %s",
                        operation,
                        attempt,
                        exc,
                    )
                    raise
                if attempt == max_attempts:
                    break
                delay = compute_backoff(
                    attempt, self.policy, self._jitter()
                )
                logger.warning(
                    "%s hit retryable error on attempt %d/%d (%s). "
                    "Retrying in %.2fs",
                    operation,
                    attempt,
                    max_attempts,
                    exc,
                    delay,
                )
                self._wait(delay)
                continue

            self._emit("Success")
            if attempt > 1:
                logger.info(
                    "%s succeeded on attempt %d", operation, attempt
                )
            return result

        self._emit("Exhausted")
        assert last_error is not None
        logger.error(
            "%s exhausted %d attempts, last error: %s",
            operation,
            max_attempts,
            last_error,
        )
        raise RetryExhaustedError(
            operation, max_attempts, last_error
        ) from last_error
