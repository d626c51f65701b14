"""Error taxonomy for appvkek.

Every failure that reaches the command line is one of these classes. The
entry point maps each class to its exit code and prints the message as a
single line on stderr.
"""

from __future__ import annotations


class AppvkekError(Exception):
    """Base class for all errors raised by appvkek."""

    exit_code = 1


class UsageError(AppvkekError):
    """Bad or missing command line flags, or an unusable wallet address."""

    exit_code = 2


class ConfigError(AppvkekError):
    """Required configuration (an explorer API key) is missing."""

    exit_code = 3


class NetworkError(AppvkekError):
    """Transport level failure talking to the explorer or the RPC node."""

    exit_code = 4


class ApiError(AppvkekError):
    """The explorer or RPC node answered with an error or a malformed body."""

    exit_code = 5


class RateLimitError(ApiError):
    """The explorer throttled the request."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


def body_excerpt(text: str, limit: int = 200) -> str:
    """First ``limit`` characters of a response body, folded onto one line."""
    return " ".join(text[:limit].split())
