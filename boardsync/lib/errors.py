"""
Error taxonomy for board-sync.

Configuration errors are fatal. Transient API errors and state mismatches are
retried by the state verifier. Authentication failures and rate-limit
exhaustion abort the run without retry.
"""

import re
import subprocess
from enum import Enum


class BoardSyncError(Exception):
    """Base class for all board-sync errors."""


class ConfigurationError(BoardSyncError):
    """Rules, settings or board fields are missing or malformed."""


class GitHubAPIError(BoardSyncError):
    """A GitHub API call failed."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class TransientAPIError(GitHubAPIError):
    """Temporary failure (timeout, 5xx, secondary rate limit). Safe to retry."""


class AuthenticationError(GitHubAPIError):
    """Bad or missing credentials."""


class RateLimitExhaustedError(GitHubAPIError):
    """Primary rate limit budget is exhausted."""


class StateMismatchError(BoardSyncError):
    """A just-written field is not yet reflected on read (eventual consistency)."""

    def __init__(self, field_name: str, item: str, expected, actual):
        self.field_name = field_name
        self.item = item
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{field_name.capitalize()} mismatch for {item}: "
            f"expected {expected!r}, current {actual!r}"
        )


class ErrorClass(Enum):
    TRANSIENT = "transient"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    OTHER = "other"


AUTH_PATTERNS = re.compile(r"bad credentials|not authenticated|requires authentication|http 401", re.I)
SECONDARY_RATE_PATTERNS = re.compile(r"secondary rate limit|abuse detection", re.I)
RATE_PATTERNS = re.compile(r"rate limit", re.I)
TRANSIENT_PATTERNS = re.compile(
    r"timed? ?out|timeout|econnreset|etimedout|enotfound|eai_again|econnrefused"
    r"|connection reset|http 50[234]|something went wrong|temporarily unavailable",
    re.I,
)


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an exception for retry/escalation decisions."""
    if isinstance(error, AuthenticationError):
        return ErrorClass.AUTH
    if isinstance(error, RateLimitExhaustedError):
        return ErrorClass.RATE_LIMIT
    if isinstance(error, (TransientAPIError, StateMismatchError, subprocess.TimeoutExpired)):
        return ErrorClass.TRANSIENT

    message = str(error)
    if AUTH_PATTERNS.search(message):
        return ErrorClass.AUTH
    if SECONDARY_RATE_PATTERNS.search(message):
        return ErrorClass.TRANSIENT
    if RATE_PATTERNS.search(message):
        return ErrorClass.RATE_LIMIT
    if TRANSIENT_PATTERNS.search(message):
        return ErrorClass.TRANSIENT
    return ErrorClass.OTHER


def is_retryable(error: BaseException) -> bool:
    return classify_error(error) == ErrorClass.TRANSIENT


def is_fatal(error: BaseException) -> bool:
    """Errors that must abort the run instead of failing a single item."""
    if isinstance(error, ConfigurationError):
        return True
    return classify_error(error) in (ErrorClass.AUTH, ErrorClass.RATE_LIMIT)


def error_from_message(message: str, status: int | None = None) -> GitHubAPIError:
    """Build the most specific GitHubAPIError subclass for a failure message."""
    generic = GitHubAPIError(message, status)
    kind = classify_error(generic)
    if kind == ErrorClass.AUTH or status == 401:
        return AuthenticationError(message, status)
    if kind == ErrorClass.RATE_LIMIT:
        return RateLimitExhaustedError(message, status)
    if kind == ErrorClass.TRANSIENT or (status is not None and status >= 500):
        return TransientAPIError(message, status)
    return generic
