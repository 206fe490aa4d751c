"""Configuration management with XDG paths, atomic writes, and precedence resolution.

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.tiercache/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **User config** -- a JSON file holding :class:`~tiercache.models.CacheConfig`
  fields, managed with :func:`load_user_config` / :func:`save_user_config`.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, project-local config, and user config into the
  final :class:`~tiercache.models.CacheConfig`.

The cache engine itself never reads configuration files; callers build a
``CacheConfig`` (directly or via :func:`resolve_config`) and pass it in.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from tiercache.exceptions import ConfigError
from tiercache.fileio import atomic_write
from tiercache.models import CacheConfig

_APP_NAME = "tiercache"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "tiercache.json"

# Environment variable -> CacheConfig field.
_ENV_FIELDS = {
    "TIERCACHE_DIR": "storage_location",
    "TIERCACHE_NAME": "name",
    "TIERCACHE_MAX_DISK_BYTES": "max_disk_bytes",
    "TIERCACHE_MEMORY_COUNT_LIMIT": "memory_count_limit",
    "TIERCACHE_MEMORY_COST_LIMIT": "memory_cost_limit",
    "TIERCACHE_DEFAULT_TTL": "default_expiry",
}
_INT_FIELDS = {"max_disk_bytes", "memory_count_limit", "memory_cost_limit"}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/tiercache/`` (default ``~/.config/tiercache/``).
    On macOS/Windows: ``~/.tiercache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the default ``storage_location``.

    On Linux/BSD: ``$XDG_CACHE_HOME/tiercache/`` (default ``~/.cache/tiercache/``).
    On macOS/Windows: ``~/.tiercache/cache/``.

    The directory is not created here; the disk tier creates its own folder
    on the first write.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    return _fallback_base_dir() / "cache"


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/tiercache/`` (default ``~/.local/share/tiercache/``).
    On macOS/Windows: ``~/.tiercache/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- User and project config ---


def _user_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def _read_json(path: Path, what: str) -> Optional[dict[str, Any]]:
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid {what} at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {what} at {path}: expected a JSON object")
    return data


def load_user_config() -> dict[str, Any]:
    """Load the user configuration file.

    Returns:
        The raw field mapping, empty if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    return _read_json(_user_config_path(), "user config") or {}


def save_user_config(config: CacheConfig) -> Path:
    """Persist *config* atomically as the user configuration.

    Returns:
        The path written.
    """
    path = _user_config_path()
    data = config.model_dump(mode="json")
    atomic_write(path, json.dumps(data, indent=2) + "\n")
    return path


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./tiercache.json``.

    Returns:
        The parsed JSON object, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """
    return _read_json(Path.cwd() / _PROJECT_CONFIG_FILENAME, "project config")


def _env_overrides() -> dict[str, Any]:
    """Collect ``TIERCACHE_*`` environment overrides."""
    overrides: dict[str, Any] = {}
    for var, field in _ENV_FIELDS.items():
        raw = os.environ.get(var)
        if not raw:
            continue
        if field in _INT_FIELDS:
            try:
                overrides[field] = int(raw)
            except ValueError:
                raise ConfigError(f"{var} must be an integer, got {raw!r}") from None
        elif field == "default_expiry" and raw != "never":
            try:
                overrides[field] = float(raw)
            except ValueError:
                raise ConfigError(
                    f"{var} must be a number of seconds or 'never', got {raw!r}"
                ) from None
        else:
            overrides[field] = raw
    return overrides


# --- Precedence resolution ---


def resolve_config(
    cli_dir: Optional[str] = None,
    cli_name: Optional[str] = None,
) -> CacheConfig:
    """Resolve the effective configuration.

    Precedence (high to low):
        1. CLI flags (``cli_dir``, ``cli_name``)
        2. Environment variables (``TIERCACHE_DIR``, ``TIERCACHE_NAME``, ...)
        3. Project config (``./tiercache.json``)
        4. User config (``~/.config/tiercache/config.json``)
        5. Defaults (``storage_location`` = :func:`get_cache_dir`)

    Raises:
        ConfigError: If any source is malformed or the merged values fail
            validation.
    """
    merged: dict[str, Any] = {"storage_location": str(get_cache_dir())}
    merged.update(load_user_config())
    merged.update(load_project_config() or {})
    merged.update(_env_overrides())
    if cli_dir is not None:
        merged["storage_location"] = cli_dir
    if cli_name is not None:
        merged["name"] = cli_name

    try:
        return CacheConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid cache configuration: {exc}") from exc
