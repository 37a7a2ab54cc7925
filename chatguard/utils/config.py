import copy
import json
import os
from typing import Any, Dict, Optional

from jsonschema import ValidationError, validate

from ..core.exceptions import ConfigError
from .logger import logger

"""
Configuration loader for ChatGuard.

Behavior:
- Looks for an explicit path, then env var `CHATGUARD_CONFIG`, then
  `chatguard/config.json` next to the package.
- A file that exists but is invalid JSON or fails schema validation is a
  fatal ConfigError.
- If no file is found, conservative defaults are used.
"""

CONFIG_ENV = "CHATGUARD_CONFIG"

_DEFAULT_CONFIG: Dict[str, Any] = {
    "providers": [],
    "max_failures_before_switch": 3,
    "poll_interval": 60,
    "conversation_delay": 2,
    "page_size": 100,
    "classification_timeout": 30,
    "collector": {
        "base_url": "http://localhost:8001",
        "timeout": 15,
        "sources": ["telegram"],
    },
    "database": {"path": os.path.join("~", ".chatguard", "chatguard.db")},
    "default_owner_id": 1,
    "master_key_env": "CHATGUARD_MASTER_KEY",
    "log_level": "INFO",
}

_config_cache: Dict[str, Any] = {}
_schema_cache: Dict[str, Any] = {}


def _default_config_path() -> str:
    base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    return os.path.join(base_dir, "config.json")


def _schema_path() -> str:
    return os.path.join(
        os.path.dirname(__file__), "..", "json_schema", "config.schema.json"
    )


def default_config() -> Dict[str, Any]:
    return copy.deepcopy(_DEFAULT_CONFIG)


def merge_defaults(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay a user config on the defaults (nested dicts merged one level)."""
    merged = default_config()
    for key, value in cfg.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None, use_cache: bool = True) -> Dict[str, Any]:
    """Load configuration from JSON with defaults merged in.

    Raises:
        ConfigError: if a config file exists but is unreadable or invalid
    """
    global _config_cache
    if use_cache and _config_cache and path is None:
        return _config_cache

    candidates = []
    if path:
        candidates.append(path)
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        candidates.append(env_path)
    candidates.append(_default_config_path())

    for p in candidates:
        p_abs = os.path.abspath(os.path.expanduser(p))
        if not os.path.exists(p_abs):
            continue
        try:
            with open(p_abs, "r", encoding="utf-8") as f:
                cfg = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Invalid config file {p_abs}: {e}") from e

        validate_config(cfg)
        merged = merge_defaults(cfg)
        _config_cache = merged
        logger.info(f"Configuration loaded from {p_abs}")
        return merged

    logger.warning(
        "No config found; using default configuration. "
        f"Set {CONFIG_ENV} or create 'chatguard/config.json' to customize."
    )
    _config_cache = default_config()
    return _config_cache


def reset_config_cache() -> None:
    """Forget the cached configuration (mainly for testing)."""
    global _config_cache
    _config_cache = {}


def validate_config(cfg: Dict[str, Any]) -> None:
    """Validate configuration against `json_schema/config.schema.json`.

    Raises:
        ConfigError: on any schema violation
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Configuration must be a JSON object/dict")

    if not _schema_cache:
        with open(_schema_path(), "r", encoding="utf-8") as f:
            _schema_cache.update(json.load(f))

    try:
        validate(instance=cfg, schema=_schema_cache)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e.message}") from e


if __name__ == "__main__":
    # Simple CLI for debugging
    print(json.dumps(load_config(), indent=2))
