"""Environment helper utilities for API access."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable, Optional

from . import config

ALIAS_KEY_MAP = {
    "api base url": config.ENV_API_BASE_URL,
    "base url": config.ENV_API_BASE_URL,
    "api url": config.ENV_API_BASE_URL,
    "access token": config.ENV_ACCESS_TOKEN,
    "token": config.ENV_ACCESS_TOKEN,
    "bearer token": config.ENV_ACCESS_TOKEN,
    "timeout": config.ENV_TIMEOUT_SECONDS,
    "allow sample fallback": config.ENV_ALLOW_SAMPLE_FALLBACK,
    "settings path": config.ENV_SETTINGS_PATH,
}

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def load_env(path: Optional[Path] = None) -> Dict[str, str]:
    """Load environment variables from a .env file, returning a mapping.

    The file is expected to contain KEY=VALUE pairs. Existing os.environ takes
    precedence, but values from the file are also exported for downstream use.
    """

    env_path = Path(path) if path else Path(__file__).resolve().parent.parent / ".env"
    values: Dict[str, str] = {}
    if not env_path.exists():
        return values

    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        parsed_key = _normalize_key(key)
        value = raw_value.strip().strip('"').strip("'")
        if parsed_key:
            values[parsed_key] = value
            os.environ.setdefault(parsed_key, value)
    return values


def require(keys: Iterable[str]) -> Dict[str, str]:
    """Ensure the provided keys exist in the environment, raising if missing."""

    names = list(keys)
    missing = [name for name in names if name not in os.environ]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
    return {name: os.environ[name] for name in names}


def get_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def get_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _normalize_key(key: str) -> Optional[str]:
    lowered = key.lower().strip()
    if not lowered:
        return None
    if lowered in ALIAS_KEY_MAP:
        return ALIAS_KEY_MAP[lowered]
    return lowered.replace(" ", "_").upper()
