"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import ElevatrConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per process
_config_cache: ElevatrConfig | None = None


def get_xdg_config_home() -> Path:
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_xdg_data_home() -> Path:
    if xdg_home := os.environ.get("XDG_DATA_HOME"):
        return Path(xdg_home)
    return Path.home() / ".local" / "share"


def get_user_config_path() -> Path:
    """Path to ~/.config/elevatr/config.json (or XDG equivalent)."""
    return get_xdg_config_home() / "elevatr" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".elevatr.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries. Values in ``override`` win; nested dicts
    are merged rather than replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 20}})
        {'a': 1, 'b': {'x': 10, 'y': 20}}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """Load a JSON object from ``path``; None if missing or unparseable."""
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None

    if isinstance(data, dict):
        return data
    logger.warning("Config at %s is not a JSON object, ignoring", path)
    return None


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        ELEVATR_DATA_DIR - overrides storage.data_dir
        ELEVATR_CLOUD_URL - overrides storage.cloud_url
        ELEVATR_CLOUD_TOKEN - overrides storage.cloud_token
        ELEVATR_REFRESH_INTERVAL - overrides sync.refresh_interval_seconds
        ELEVATR_ENVIRONMENT - overrides environment
    """
    result = config_dict.copy()
    storage = dict(result.get("storage", {}))

    if data_dir := os.environ.get("ELEVATR_DATA_DIR"):
        storage["data_dir"] = data_dir
    if cloud_url := os.environ.get("ELEVATR_CLOUD_URL"):
        storage["cloud_url"] = cloud_url
    if cloud_token := os.environ.get("ELEVATR_CLOUD_TOKEN"):
        storage["cloud_token"] = cloud_token
    if storage:
        result["storage"] = storage

    if interval_str := os.environ.get("ELEVATR_REFRESH_INTERVAL"):
        try:
            interval = float(interval_str)
        except ValueError:
            logger.warning("Invalid ELEVATR_REFRESH_INTERVAL value '%s', ignoring", interval_str)
        else:
            if interval < 0:
                logger.warning("ELEVATR_REFRESH_INTERVAL must be >= 0, got %s, ignoring", interval)
            else:
                result["sync"] = {**result.get("sync", {}), "refresh_interval_seconds": interval}

    if environment := os.environ.get("ELEVATR_ENVIRONMENT"):
        result["environment"] = environment

    return result


def get_default_config() -> dict[str, Any]:
    return {
        "environment": "development",
        "storage": {"data_dir": str(get_xdg_data_home() / "elevatr")},
        "sync": {"refresh_interval_seconds": 300.0},
        "navigation": {
            "route_cache_max_age_seconds": 300.0,
            "history_limit": 10,
            "persist_debounce_seconds": 0.5,
            "state_max_age_hours": 24.0,
        },
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> ElevatrConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (ELEVATR_*)
        2. Project config (.elevatr.json)
        3. User config (~/.config/elevatr/config.json)
        4. Hardcoded defaults

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = ElevatrConfig(**merged)
    _config_cache = config
    return config


def clear_cache() -> None:
    """Clear the cached configuration."""
    global _config_cache
    _config_cache = None
