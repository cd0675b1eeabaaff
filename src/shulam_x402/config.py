"""
Settings for the payment gate, resolved from the environment.

Values are layered the same way for every caller: an optional ``.env`` file
provides defaults, the process environment overrides it, and explicit
``overrides`` win over both.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import dotenv_values

from shulam_x402.errors import ConfigError
from shulam_x402.facilitator import (
    DEFAULT_FACILITATOR_URL,
    FacilitatorConfig,
    FacilitatorPolicy,
)

__all__ = [
    "X402Settings",
    "load_settings",
]

_ENV_FACILITATOR_URL = "X402_FACILITATOR_URL"
_ENV_TIMEOUT = "X402_FACILITATOR_TIMEOUT_SECONDS"
_ENV_MAX_RETRIES = "X402_FACILITATOR_MAX_RETRIES"
_ENV_BACKOFF = "X402_FACILITATOR_BACKOFF_SECONDS"
_ENV_PROVIDER = "X402_PROVIDER_NAME"
_ENV_WEBHOOK_SECRET = "X402_WEBHOOK_SECRET"


def _parse_float(values: Mapping[str, Optional[str]], key: str, default: str) -> float:
    raw = values.get(key) or default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got '{raw}'") from exc
    if parsed <= 0:
        raise ConfigError(f"{key} must be greater than zero")
    return parsed


def _parse_int(values: Mapping[str, Optional[str]], key: str, default: str) -> int:
    raw = values.get(key) or default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got '{raw}'") from exc
    if parsed < 0:
        raise ConfigError(f"{key} must not be negative")
    return parsed


@dataclass(frozen=True)
class X402Settings:
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    facilitator_timeout: float = 5.0
    max_retries: int = 2
    backoff_seconds: float = 0.2
    provider_name: str = "x402 provider"
    webhook_secret: Optional[str] = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Optional[str]]) -> "X402Settings":
        facilitator_url = (values.get(_ENV_FACILITATOR_URL) or DEFAULT_FACILITATOR_URL).strip()
        if not facilitator_url.startswith(("http://", "https://")):
            raise ConfigError(f"{_ENV_FACILITATOR_URL} must be an http(s) URL")

        return cls(
            facilitator_url=facilitator_url.rstrip("/"),
            facilitator_timeout=_parse_float(values, _ENV_TIMEOUT, "5"),
            max_retries=_parse_int(values, _ENV_MAX_RETRIES, "2"),
            backoff_seconds=_parse_float(values, _ENV_BACKOFF, "0.2"),
            provider_name=values.get(_ENV_PROVIDER) or "x402 provider",
            webhook_secret=values.get(_ENV_WEBHOOK_SECRET) or None,
        )

    def facilitator_config(self) -> FacilitatorConfig:
        return FacilitatorConfig(
            url=self.facilitator_url,
            timeout=self.facilitator_timeout,
            policy=FacilitatorPolicy(
                max_retries=self.max_retries,
                backoff_base=self.backoff_seconds,
            ),
        )

    def __repr__(self) -> str:
        secret = "<redacted>" if self.webhook_secret else None
        return (
            f"X402Settings(facilitator_url={self.facilitator_url!r}, "
            f"facilitator_timeout={self.facilitator_timeout!r}, "
            f"max_retries={self.max_retries!r}, "
            f"backoff_seconds={self.backoff_seconds!r}, "
            f"provider_name={self.provider_name!r}, webhook_secret={secret})"
        )


def load_settings(
    *,
    env_file: Optional[str] = ".env",
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> X402Settings:
    """
    Build :class:`X402Settings` from ``env_file``, ``environ`` and ``overrides``.

    ``environ`` defaults to :data:`os.environ`. Set ``env_file`` to ``None`` to
    skip file loading entirely.
    """
    merged: dict = {}
    if env_file is not None and os.path.exists(env_file):
        merged.update(dotenv_values(env_file))
    merged.update(os.environ if environ is None else environ)
    if overrides:
        merged.update(overrides)
    return X402Settings.from_mapping(merged)
