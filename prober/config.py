"""
User configuration file support.

Reads/writes ``~/.proxyprobe/config.json``.  Command-line flags override
whatever is stored here.

Supported keys::

    base_url = "http://localhost:3030"   # test server behind the proxy
    ceiling = 18454937                   # request-direction search ceiling
    response_ceiling = 2097152           # response-direction search ceiling
    client_header_limit = 1048576        # our own response header parse limit
    lb_requests = 15
    reconnect_delay = 2.0                # seconds between connection attempts
    monitor_seconds = 0.0                # 0 = until interrupted
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from .constants import (
    CLIENT_HEADER_LIMIT,
    DEFAULT_BASE_URL,
    DEFAULT_CEILING,
    DEFAULT_LB_REQUESTS,
    DEFAULT_MONITOR_SECONDS,
    DEFAULT_RESPONSE_CEILING,
    RECONNECT_DELAY,
)

logger = logging.getLogger(__name__)

_CONFIG_DIR = os.path.join(Path.home(), ".proxyprobe")
_CONFIG_FILE = "config.json"


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "base_url": DEFAULT_BASE_URL,
    "ceiling": DEFAULT_CEILING,
    "response_ceiling": DEFAULT_RESPONSE_CEILING,
    "client_header_limit": CLIENT_HEADER_LIMIT,
    "lb_requests": DEFAULT_LB_REQUESTS,
    "reconnect_delay": RECONNECT_DELAY,
    "monitor_seconds": DEFAULT_MONITOR_SECONDS,
}


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config() -> Dict[str, Any]:
    """Defaults overlaid with the user's file; a corrupt file is ignored."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("ignoring unreadable config %s: %s", path, exc)
        return config

    if isinstance(user, dict):
        config.update(user)
    else:
        logger.warning("ignoring config %s: top level is not an object", path)
    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)

    return path


def get_config_value(key: str) -> Any:
    return load_config().get(key, DEFAULTS.get(key))


def set_config_value(key: str, value: Any) -> str:
    """Set a single value and persist.  Returns file path."""
    config = load_config()
    config[key] = value
    return save_config(config)


def config_path() -> str:
    """Config file location, for display."""
    return _config_path()
