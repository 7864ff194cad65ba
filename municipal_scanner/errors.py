from __future__ import annotations

from typing import Any, Optional


class ScannerError(Exception):
    """Base class for errors raised by the municipal scanner."""


class ConfigurationError(ScannerError):
    pass


class CalendarFetchError(ScannerError):
    """The municipality's meeting calendar page could not be retrieved."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch calendar page {url}: {reason}")
        self.url = url
        self.reason = reason


class CompletionError(ScannerError):
    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class StoreError(ScannerError):
    pass
