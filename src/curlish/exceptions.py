"""Client-specific exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx


class CurlishError(Exception):
    """Base exception for all curlish failures."""

    def __init__(
        self,
        message: str,
        *,
        option: str | None = None,
        response: httpx.Response | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.option = option
        self.response = response
        self.cause = cause

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if self.option is None:
            return str(self.args[0])
        return f"{self.option}: {self.args[0]}"


class UnknownOption(CurlishError, ValueError):
    """Raised when an integer option key is not part of the registry."""


class InvalidOptionType(CurlishError, TypeError):
    """Raised when a typed option holds a value of the wrong type."""


class UnsupportedProxyKind(CurlishError):
    """Raised for proxy kinds other than plain HTTP."""


class InvalidCookieJar(CurlishError):
    """Raised when the cookie jar option is neither a bool nor a jar."""


class InvalidRedirectPolicy(InvalidOptionType):
    """Raised when the redirect policy option is not a usable callable."""


class URLParseError(CurlishError):
    """Raised when a request or proxy URL cannot be parsed."""


class FileAccessError(CurlishError):
    """Raised when a file referenced by a multipart parameter cannot be opened."""


class StreamIOError(CurlishError):
    """Raised when reading a file streamed into a multipart body fails."""


class RedirectRefused(CurlishError):
    """Raised when the redirect policy refuses a hop.

    ``response`` holds the last (redirect) response received.
    """
