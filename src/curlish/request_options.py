"""Option layer resolution and per-call overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import httpx

from .options import Opt, affects_jar, affects_transport


def merge_options(*layers: Mapping[Opt, Any] | None) -> dict[Opt, Any]:
    """Merge option layers; later layers take precedence.

    A ``None`` value removes the option set by lower layers.
    """
    merged: dict[Opt, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
    return merged


def merge_headers(*layers: Mapping[str, str] | None) -> httpx.Headers:
    """Merge header layers case-insensitively; later layers take precedence."""
    merged = httpx.Headers()
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            merged[str(key)] = str(value)
    return merged


@dataclass
class OneTimeOverrides:
    """State staged for exactly the next call on a session."""

    options: dict[Opt, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    cookies: list[tuple[str, str]] = field(default_factory=list)
    reuse_transport: bool = True
    reuse_jar: bool = True

    def set_option(self, key: Opt, value: Any) -> None:
        self.options[key] = value
        if affects_transport(key):
            self.reuse_transport = False
        if affects_jar(key):
            self.reuse_jar = False


@dataclass(frozen=True)
class ResolvedRequest:
    options: Mapping[Opt, Any]
    headers: httpx.Headers
    cookies: tuple[tuple[str, str], ...] = ()


def resolve(
    defaults: Mapping[Opt, Any],
    persistent: Mapping[Opt, Any],
    overrides: OneTimeOverrides,
    persistent_headers: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
) -> ResolvedRequest:
    """Resolve the options, headers and cookies for one outbound request.

    Options: one-time > persistent > default. Headers: per-call headers >
    one-time > persistent.
    """
    return ResolvedRequest(
        options=MappingProxyType(merge_options(defaults, persistent, overrides.options)),
        headers=merge_headers(persistent_headers, overrides.headers, headers),
        cookies=tuple(overrides.cookies),
    )
