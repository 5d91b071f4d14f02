"""Redirect policies built from resolved options."""

from __future__ import annotations

import inspect
from typing import Any, Callable, Mapping, Sequence

import httpx

from .exceptions import InvalidOptionType, InvalidRedirectPolicy, RedirectRefused
from .options import Opt

RedirectPolicy = Callable[[httpx.Request, Sequence[httpx.Request]], None]


class UseLastResponse(Exception):
    """Raised by a redirect policy to stop following and keep the last response."""


def _accepts_request_and_via(policy: Callable[..., Any]) -> bool:
    try:
        signature = inspect.signature(policy)
    except (TypeError, ValueError):
        # builtins and some C callables carry no signature
        return True
    try:
        signature.bind(None, ())
    except TypeError:
        return False
    return True


def limit_redirects(follow: bool, max_redirects: int) -> RedirectPolicy:
    """Policy following at most ``max_redirects`` hops, counting the original request."""

    def policy(request: httpx.Request, via: Sequence[httpx.Request]) -> None:
        if not follow or max_redirects <= 0:
            raise RedirectRefused("redirect not allowed")
        if len(via) >= max_redirects:
            raise RedirectRefused(f"stopped after {len(via)} redirects")

    return policy


def build_redirect_policy(options: Mapping[Opt, Any]) -> RedirectPolicy:
    if Opt.REDIRECT_POLICY in options:
        policy = options[Opt.REDIRECT_POLICY]
        if not callable(policy) or not _accepts_request_and_via(policy):
            raise InvalidRedirectPolicy(
                "must be a callable accepting (request, via)",
                option=Opt.REDIRECT_POLICY.option_name,
            )
        return policy

    follow = options.get(Opt.FOLLOWLOCATION, False)
    if not isinstance(follow, bool):
        raise InvalidOptionType("must be bool", option=Opt.FOLLOWLOCATION.option_name)

    max_redirects = options.get(Opt.MAXREDIRS, 0)
    if isinstance(max_redirects, bool) or not isinstance(max_redirects, int):
        raise InvalidOptionType("must be int", option=Opt.MAXREDIRS.option_name)

    return limit_redirects(follow, max_redirects)
