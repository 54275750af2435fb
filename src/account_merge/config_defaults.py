"""Configuration lookup for the account merge service.

Resolution order for every key:
1. Process environment
2. `.env` (local override layer, optional)
3. `.env.defaults` (version-controlled catalog of keys and defaults)
4. The fallback passed by the caller

Runtime merge settings (expiry, cooling period) are NOT read here; they live
in the `settings` table and are served by `settings_provider`.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)

TRUTHY = ('true', '1', 'yes', 'on')


@lru_cache(maxsize=1)
def load_defaults() -> Dict[str, str]:
    """Load `.env.defaults` from the repository root and cwd, then overlay `.env`.

    Returns an empty dict when neither file exists (production deployments
    supply everything through the environment).
    """
    dirs: list[Path] = []
    repo_root = Path(__file__).resolve().parent.parent.parent
    dirs.append(repo_root)

    try:
        cwd = Path.cwd()
        if cwd.resolve() != repo_root.resolve():
            dirs.append(cwd)
    except (OSError, FileNotFoundError):
        pass

    merged: Dict[str, str] = {}

    for directory in dirs:
        defaults_path = directory / ".env.defaults"
        if defaults_path.exists():
            merged.update(_parse_env_file(defaults_path))

    for directory in dirs:
        env_path = directory / ".env"
        if env_path.exists():
            merged.update(_parse_env_file(env_path))

    return merged


def get_default(key: str, fallback: str | None = None) -> str | None:
    """Return the catalog default for a key (ignores the environment)."""
    return load_defaults().get(key, fallback)


def require_default(key: str) -> str:
    """Return the catalog default or raise if the key is not catalogued."""
    value = load_defaults().get(key)
    if value is None:
        raise RuntimeError(f"Required default '{key}' missing from .env/.env.defaults")
    return value


def get_config(key: str, fallback: str | None = None) -> str | None:
    """Environment first, then the defaults catalog, then `fallback`."""
    value = os.environ.get(key)
    if value is not None and value != '':
        return value
    return get_default(key, fallback)


def get_int_config(key: str, fallback: int) -> int:
    """Integer variant of `get_config`; unparsable values yield `fallback`."""
    raw = get_config(key)
    if raw is None:
        return fallback
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Config key {key} has non-integer value {raw!r}, using {fallback}")
        return fallback


def get_bool_config(key: str, fallback: bool = False) -> bool:
    raw = get_config(key)
    if raw is None:
        return fallback
    return raw.strip().lower() in TRUTHY


def _parse_env_file(env_path: Path) -> Dict[str, str]:
    defaults: Dict[str, str] = {}
    with env_path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, value = line.split("=", 1)
            value = value.strip()
            # Strip surrounding quotes (single or double)
            if len(value) >= 2 and value[0] in ('"', "'") and value[-1] == value[0]:
                value = value[1:-1]
            defaults[key.strip()] = value
    return defaults
