"""Default option layer for HTTP client sessions."""

from __future__ import annotations

import os
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from .options import USER_AGENT, Opt


class ClientDefaults(BaseModel):
    """Builtin defaults, the lowest-precedence option layer."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    follow_location: bool = True
    max_redirs: int = Field(default=10, ge=0)
    auto_referer: bool = True
    user_agent: str = USER_AGENT
    cookie_jar: bool = True

    def as_options(self) -> dict[Opt, Any]:
        return {
            Opt.FOLLOWLOCATION: self.follow_location,
            Opt.MAXREDIRS: self.max_redirs,
            Opt.AUTOREFERER: self.auto_referer,
            Opt.USERAGENT: self.user_agent,
            Opt.COOKIEJAR: self.cookie_jar,
        }

    @classmethod
    def from_env(cls, prefix: str = "CURLISH_", environ: Mapping[str, str] | None = None) -> "ClientDefaults":
        """Build defaults from ``<prefix><FIELD>`` environment variables.

        Unset variables keep the builtin value. Invalid values raise
        ``pydantic.ValidationError``.
        """
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for field in cls.model_fields:
            raw = env.get(f"{prefix}{field.upper()}")
            if raw is not None:
                values[field] = raw
        return cls.model_validate(values)


DEFAULTS = ClientDefaults()
DEFAULT_OPTIONS: Mapping[Opt, Any] = MappingProxyType(DEFAULTS.as_options())
