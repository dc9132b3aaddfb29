"""Settings for relacon.

Config is stored at ~/.config/relacon/config.json (XDG-compliant)::

    {
      "backend": "pyusb",
      "log_level": "WARNING",
      "response_timeout_ms": 500,
      "filter_collection_usage": true
    }

Every key is optional.  ``RELACON_BACKEND`` in the environment overrides
the configured backend.
"""

import json
import logging
import os
from typing import Optional

from .protocol import DEFAULT_TIMEOUT_MS, INFINITE_TIMEOUT

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'relacon')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')

BACKEND_ENV = 'RELACON_BACKEND'
DEFAULT_LOG_LEVEL = 'WARNING'


def load_config() -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(CONFIG_PATH, 'r') as f:
            config = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    if not isinstance(config, dict):
        log.warning("Ignoring %s: top level is not an object", CONFIG_PATH)
        return {}
    return config


# =========================================================================
# Accessors
# =========================================================================

def get_backend_name() -> Optional[str]:
    """Configured backend name, or None for the platform default."""
    name = os.environ.get(BACKEND_ENV) or load_config().get('backend')
    return name or None


def get_log_level() -> int:
    """Configured logging threshold (defaults to WARNING)."""
    name = load_config().get('log_level', DEFAULT_LOG_LEVEL)
    level = logging.getLevelName(str(name).upper())
    if not isinstance(level, int):
        log.warning("Unknown log_level %r, using %s", name, DEFAULT_LOG_LEVEL)
        return logging.WARNING
    return level


def get_response_timeout_ms() -> int:
    """How long numeric reads wait for the device's response."""
    value = load_config().get('response_timeout_ms', DEFAULT_TIMEOUT_MS)
    if isinstance(value, bool) or not isinstance(value, int) or value < INFINITE_TIMEOUT:
        log.warning("Invalid response_timeout_ms %r, using %d", value, DEFAULT_TIMEOUT_MS)
        return DEFAULT_TIMEOUT_MS
    return value


def get_filter_collection_usage() -> Optional[bool]:
    """Forced hidapi collection filtering, or None for the platform default."""
    value = load_config().get('filter_collection_usage')
    if value is None or isinstance(value, bool):
        return value
    log.warning("Invalid filter_collection_usage %r, using platform default", value)
    return None
