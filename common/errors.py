"""
Error taxonomy shared by the wallpaper components.

    ValidationError  bad user input (format/fit/size)        -> client error
    FetchError       provider unreachable or bad payload     -> server error
    EncodeError      corrupt/unsupported source, encoder bug -> server error
    ResolveTimeout   gave up waiting on an in-flight resolve -> server error

Disk problems are left as the built-in OSError.
"""
from __future__ import annotations

from typing import Optional


class WallpaperError(Exception):
    """Base class for every error raised on purpose by this project."""


class ValidationError(WallpaperError, ValueError):
    def __init__(self, message: str, *, field: Optional[str] = None, value: object = None):
        super().__init__(message)
        self.field = field
        self.value = value


class FetchError(WallpaperError, RuntimeError):
    """
    Remote acquisition failed.

    Attributes:
        cause: underlying exception from the HTTP client, if any.
        status_code: HTTP status returned by the provider, if any.
    """

    def __init__(self, message: str, *, cause: Optional[BaseException] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.cause = cause
        self.status_code = status_code


class EncodeError(WallpaperError, RuntimeError):
    pass


class ResolveTimeout(WallpaperError, TimeoutError):
    def __init__(self, key: str, timeout: float):
        super().__init__(f"timed out after {timeout:.1f}s waiting for {key}")
        self.key = key
        self.timeout = timeout
