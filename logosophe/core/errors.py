from __future__ import annotations


class LogosopheError(Exception):
    """Base error for Logosophe."""


class StorageError(LogosopheError):
    """Object store read/write failure."""


class ObjectNotFoundError(StorageError):
    """Requested object key does not exist in the store."""


class RangeNotSatisfiableError(LogosopheError):
    """Range header is malformed or outside the object bounds."""

    def __init__(self, message: str, *, size: int) -> None:
        super().__init__(message)
        self.size = size


class SettingsValidationError(LogosopheError):
    """System setting value outside its accepted bounds."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


class RateLimitedError(LogosopheError):
    """Caller exceeded a per-user rate limit."""

    def __init__(self, retry_after_s: int) -> None:
        super().__init__(f"Rate limited; retry after {retry_after_s}s")
        self.retry_after_s = retry_after_s
