"""Custom exceptions for CodeCompass."""

from __future__ import annotations

import re
from typing import Iterator

_RATE_LIMIT_PATTERN = re.compile(
    r"\b429\b|rate.?limit|quota|resource.?exhaust|capacity", re.IGNORECASE
)
_CONNECTIVITY_PATTERN = re.compile(
    r"connect|timeout|timed out|unavailable|refused|reset|unreachable", re.IGNORECASE
)


class CodeCompassError(Exception):
    """Base exception for all CodeCompass errors."""


class ConnectivityError(CodeCompassError):
    """Raised when a remote service cannot be reached.

    Examples: connection refused, request timeout, HTTP 5xx responses.
    """


class RateLimitedError(CodeCompassError):
    """Raised when a provider rejects a request because of rate limiting.

    Examples: HTTP 429, quota or resource-exhaustion messages.
    """


class MalformedResponseError(CodeCompassError):
    """Raised when a remote service returns a payload that cannot be used.

    Examples: invalid JSON, missing ``embedding`` or ``choices`` fields.
    """


class AuthenticationError(CodeCompassError):
    """Raised on HTTP 401/403. Never retried."""


class NotFoundError(CodeCompassError):
    """Raised on HTTP 404 (for example a collection that does not exist)."""


class ServiceError(CodeCompassError):
    """Raised for any other non-success HTTP status."""


class EmbeddingError(CodeCompassError):
    """Raised when an embedding provider cannot produce a vector."""


class GenerationError(CodeCompassError):
    """Raised when a generative provider cannot produce a response."""


class VectorStoreError(CodeCompassError):
    """Raised when a vector store operation cannot be completed."""


class DimensionMismatchError(VectorStoreError):
    """Raised when an embedding does not match the collection dimension
    and the collection may not be recreated."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension {actual} does not match collection dimension {expected}"
        )


class RetryExhaustedError(CodeCompassError):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        attempts: Number of attempts made.
        last_error: The last error encountered before giving up.
    """

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"All {attempts} attempts exhausted. Last error: {last_error}"
        )


def iter_error_chain(exc: BaseException | None) -> Iterator[BaseException]:
    """Yield *exc* followed by its causes, last errors of retries included."""
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        if isinstance(exc, RetryExhaustedError) and exc.last_error is not None:
            exc = exc.last_error
        else:
            exc = exc.__cause__ or exc.__context__


def is_rate_limit_error(exc: BaseException | None) -> bool:
    """Return True when *exc* (or anything it wraps) signals rate limiting."""
    for error in iter_error_chain(exc):
        if isinstance(error, RateLimitedError):
            return True
        if _RATE_LIMIT_PATTERN.search(str(error)):
            return True
    return False


def is_connectivity_error(exc: BaseException | None) -> bool:
    """Return True when *exc* (or anything it wraps) looks like a connectivity problem."""
    for error in iter_error_chain(exc):
        if isinstance(error, ConnectivityError):
            return True
        if _CONNECTIVITY_PATTERN.search(str(error)):
            return True
    return False
