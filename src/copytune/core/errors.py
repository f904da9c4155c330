"""Exception types raised by the core."""

from __future__ import annotations

from typing import Optional


class CopytuneError(Exception):
    """Base class for all copytune errors."""


class ConfigurationError(CopytuneError):
    """Invalid or incomplete configuration detected before any network call."""


class UnsupportedProviderError(ConfigurationError):
    """Provider tag outside the supported set."""

    def __init__(self, tag: str) -> None:
        super().__init__(f"Unsupported provider: {tag}")
        self.tag = tag


class ProviderError(CopytuneError):
    """Provider answered with a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ResponseParseError(ProviderError):
    """Provider answered 2xx but the body lacks the expected shape."""


class HostError(CopytuneError):
    """The host document rejected or failed a request."""
