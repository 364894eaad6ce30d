# kindle_bot/api/errors.py

"""Typed errors raised by the lookup API client.

The retry engine switches on :class:`ErrorKind` instead of inspecting
error messages, so every failure the client can produce maps to exactly
one of these classes.
"""

from enum import Enum


class ErrorKind(Enum):
    """Whether a failure is worth another attempt."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


class LookupApiError(Exception):
    """Base class for lookup API failures."""

    kind: ErrorKind = ErrorKind.FATAL

    def __init__(
        self, message: str, status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status


# --- Retryable -------------------------------------------------------------


class RateLimitError(LookupApiError):
    """HTTP 429 / ``TooManyRequests`` from the API."""

    kind = ErrorKind.RETRYABLE


class TruncatedResponseError(LookupApiError):
    """Transport read ended early or the body was cut off."""

    kind = ErrorKind.RETRYABLE


# --- Fatal -----------------------------------------------------------------


class MalformedRequestError(LookupApiError):
    """The API rejected the request parameters."""


class ItemNotFoundError(LookupApiError):
    """None of the requested items exist."""


class SchemaMismatchError(LookupApiError):
    """The response did not have the expected structure."""


class AuthError(LookupApiError):
    """Credentials were rejected."""


class UpstreamError(LookupApiError):
    """Any other non-success response."""


class PartialBatchError(Exception):
    """A batch response returned fewer items than were requested."""

    def __init__(
        self, requested: list[str], missing: list[str], received: int,
    ) -> None:
        super().__init__(
            f"{len(missing)} of {len(requested)} items missing from "
            f"response (received {received}): {', '.join(missing)}"
        )
        self.requested = requested
        self.missing = missing
        self.received = received


def classify_error(exc: BaseException) -> ErrorKind:
    """Default classifier: only the typed retryable errors retry."""
    if isinstance(exc, LookupApiError):
        return exc.kind
    return ErrorKind.FATAL
