"""Configuration helpers: safe to import from anywhere.

Call init(config_dir) once at startup before accessing any paths.
"""

import json
from pathlib import Path
from typing import Any

_config_dir: Path | None = None


def init(config_dir: Path) -> None:
    """Set the configuration directory. Must be called before any other config access."""
    global _config_dir, _pool_config_cache
    _config_dir = config_dir
    _pool_config_cache = None


def config_dir() -> Path:
    """Get the configuration directory. Raises if init() hasn't been called."""
    if _config_dir is None:
        raise RuntimeError("config.init() not called")
    return _config_dir


def log_dir() -> Path:
    return config_dir() / "logs"


# Pool config: read from termpool.json, cached with mtime check
_pool_config_cache: dict[str, Any] | None = None
_pool_config_mtime: float = 0.0

_POOL_CONFIG_DEFAULTS: dict[str, Any] = {
    # Session / shell integration
    "shell_integration_timeout": 4.0,
    "shell_integration_poll_interval": 0.02,
    "stream_timeout": 3.0,
    # Pool
    "max_sessions": 20,
    "session_prefix": "termpool",
    # tmux backend
    "capture_interval": 0.25,
    "scrollback_lines": 5000,
    "container": None,  # podman container to run tmux in; None = host
}


def get_pool_config() -> dict[str, Any]:
    """Load pool config from the config dir, with mtime caching and defaults."""
    global _pool_config_cache, _pool_config_mtime
    config_file = config_dir() / "termpool.json"
    try:
        mtime = config_file.stat().st_mtime
    except OSError:
        mtime = 0.0
    if _pool_config_cache is None or mtime != _pool_config_mtime:
        config = dict(_POOL_CONFIG_DEFAULTS)
        if config_file.exists():
            try:
                loaded = json.loads(config_file.read_text())
                if isinstance(loaded, dict):
                    config.update(loaded)
            except (OSError, json.JSONDecodeError):
                pass
        _pool_config_cache = config
        _pool_config_mtime = mtime
    return _pool_config_cache
