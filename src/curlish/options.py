"""CURL-like option registry.

Option keys keep the integer values curl assigns to them so that maps built
for curl bindings translate one-to-one. Options outside curl's numbering
(``REDIRECT_POLICY``, ``PROXY_FUNC``) live above 100000.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any, Mapping

from .exceptions import UnknownOption

logger = logging.getLogger(__name__)

VERSION = "0.3.0"
USER_AGENT = f"curlish v{VERSION}"

_NAME_PREFIX = "OPT_"


class ProxyKind(IntEnum):
    HTTP = 0
    SOCKS4 = 4
    SOCKS5 = 5
    SOCKS4A = 6


class Opt(IntEnum):
    AUTOREFERER = 58
    FOLLOWLOCATION = 52
    CONNECTTIMEOUT = 78
    CONNECTTIMEOUT_MS = 156
    MAXREDIRS = 68
    PROXYTYPE = 101
    TIMEOUT = 13
    TIMEOUT_MS = 155
    COOKIEJAR = 10082
    INTERFACE = 10062
    PROXY = 10004
    REFERER = 10016
    USERAGENT = 10018

    REDIRECT_POLICY = 100000
    PROXY_FUNC = 100001

    @property
    def option_name(self) -> str:
        return f"{_NAME_PREFIX}{self.name}"


# changing any of these invalidates a cached transport
TRANSPORT_OPTIONS: frozenset[Opt] = frozenset(
    {
        Opt.CONNECTTIMEOUT,
        Opt.CONNECTTIMEOUT_MS,
        Opt.PROXYTYPE,
        Opt.TIMEOUT,
        Opt.TIMEOUT_MS,
        Opt.INTERFACE,
        Opt.PROXY,
        Opt.PROXY_FUNC,
    }
)

# changing any of these invalidates a cached cookie jar
JAR_OPTIONS: frozenset[Opt] = frozenset({Opt.COOKIEJAR})


def affects_transport(key: Opt | int) -> bool:
    return key in TRANSPORT_OPTIONS


def affects_jar(key: Opt | int) -> bool:
    return key in JAR_OPTIONS


def coerce_option_key(key: Opt | int) -> Opt:
    """Return the registry member for ``key`` or raise ``UnknownOption``."""
    if isinstance(key, Opt):
        return key
    if isinstance(key, bool) or not isinstance(key, int):
        raise UnknownOption(f"option keys must be Opt members or int, got {type(key).__name__}")
    try:
        return Opt(key)
    except ValueError as exc:
        raise UnknownOption(f"unknown option key {key}", cause=exc) from exc


def coerce_options(options: Mapping[Opt | int, Any] | None) -> dict[Opt, Any]:
    if not options:
        return {}
    return {coerce_option_key(key): value for key, value in options.items()}


def options_from_names(options: Mapping[str, Any]) -> dict[Opt, Any]:
    """Convert string-keyed options (``{"timeout": 5}``) to ``Opt`` keys.

    Names are case-insensitive and may carry the ``OPT_`` prefix. Unknown
    names are dropped.
    """
    converted: dict[Opt, Any] = {}
    for name, value in options.items():
        key = str(name).upper()
        if key.startswith(_NAME_PREFIX):
            key = key[len(_NAME_PREFIX) :]
        member = Opt.__members__.get(key)
        if member is None:
            logger.debug("Dropping unknown option name %r", name)
            continue
        converted[member] = value
    return converted
