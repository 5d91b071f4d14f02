"""HTTP client sessions configured through CURL-like options."""

from .client import HttpClient
from .config import DEFAULT_OPTIONS, ClientDefaults
from .exceptions import (
    CurlishError,
    FileAccessError,
    InvalidCookieJar,
    InvalidOptionType,
    InvalidRedirectPolicy,
    RedirectRefused,
    StreamIOError,
    UnknownOption,
    UnsupportedProxyKind,
    URLParseError,
)
from .options import USER_AGENT, VERSION, Opt, ProxyKind, options_from_names
from .redirects import RedirectPolicy, UseLastResponse

__version__ = VERSION

__all__ = [
    "ClientDefaults",
    "CurlishError",
    "DEFAULT_OPTIONS",
    "FileAccessError",
    "HttpClient",
    "InvalidCookieJar",
    "InvalidOptionType",
    "InvalidRedirectPolicy",
    "Opt",
    "ProxyKind",
    "RedirectPolicy",
    "RedirectRefused",
    "StreamIOError",
    "URLParseError",
    "USER_AGENT",
    "UnknownOption",
    "UnsupportedProxyKind",
    "UseLastResponse",
    "VERSION",
    "options_from_names",
]
