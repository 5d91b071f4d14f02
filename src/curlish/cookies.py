"""Cookie store selection."""

from __future__ import annotations

from http.cookiejar import CookieJar
from typing import Any, Mapping

import httpx

from .exceptions import InvalidCookieJar
from .options import Opt


def build_cookie_jar(options: Mapping[Opt, Any]) -> CookieJar | None:
    """Return the cookie store selected by ``Opt.COOKIEJAR``.

    ``True`` creates an in-memory jar with the standard domain/path rules,
    ``False`` or an absent option disables cookie persistence, and a
    ``CookieJar`` (or ``httpx.Cookies``) is used as given. The stdlib jar
    guards its state with an internal lock, so a shared jar may serve
    concurrent requests.
    """
    value = options.get(Opt.COOKIEJAR, False)
    if isinstance(value, bool):
        return CookieJar() if value else None
    if isinstance(value, httpx.Cookies):
        return value.jar
    if isinstance(value, CookieJar):
        return value
    raise InvalidCookieJar(
        f"expected bool or CookieJar, got {type(value).__name__}",
        option=Opt.COOKIEJAR.option_name,
    )
