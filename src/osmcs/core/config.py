"""Configuration helpers and environment-driven defaults."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_key(name: str) -> str:
    return "OSMCS_" + name.upper().replace(".", "_")


@lru_cache(maxsize=None)
def feature_enabled(name: str, default: bool = False) -> bool:
    """Return True when the named flag is enabled via environment variable.

    Names map to environment variables using the pattern:
        continue_on_error → OSMCS_CONTINUE_ON_ERROR
        feature.receipt   → OSMCS_FEATURE_RECEIPT
    Values are interpreted case-insensitively; "1", "true", "yes", "on" enable the flag.
    """

    raw = os.getenv(_env_key(name))
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


@lru_cache(maxsize=None)
def env_int(name: str, default: int) -> int:
    """Integer override from OSMCS_<NAME>; unparseable values raise ValueError."""

    raw = os.getenv(_env_key(name))
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"{_env_key(name)} must be an integer, got {raw!r}") from None


@lru_cache(maxsize=None)
def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(_env_key(name))
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def clear_config_cache() -> None:
    """Forget cached lookups (environment changed during the process)."""
    feature_enabled.cache_clear()
    env_int.cache_clear()
    env_str.cache_clear()
