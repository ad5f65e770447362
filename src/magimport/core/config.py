"""Configuration helpers and feature flag evaluation."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_key(name: str) -> str:
    return "MAGIMPORT_" + name.upper().replace(".", "_")


@lru_cache(maxsize=None)
def feature_enabled(name: str, default: bool = False) -> bool:
    """Return True when the named feature flag is enabled via environment variable.

    Feature names map to environment variables using the pattern:
        feature.mapper.strict_key_counts → MAGIMPORT_FEATURE_MAPPER_STRICT_KEY_COUNTS
    Values are interpreted case-insensitively; "1", "true", "yes", "on" enable the flag.
    """

    raw = os.getenv(_env_key(name))
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return a string setting from the environment (same naming as feature flags).

    Not cached: settings are read when a component config is built.
    """
    raw = os.getenv(_env_key(name))
    if raw is None or raw == "":
        return default
    return raw
