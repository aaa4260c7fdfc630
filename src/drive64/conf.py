"""Settings and config persistence for drive64.

Config is stored at ~/.config/drive64/config.json (XDG-compliant)::

    {
      "read_timeout_ms": 5000,
      "write_timeout_ms": 5000,
      "latency_timer": 255,
      "default_bank": "rom"
    }

Every key is optional; missing or invalid values fall back to defaults.

Usage:
    from drive64.conf import load_settings

    settings = load_settings()
    settings.read_timeout_ms
    settings.default_bank      # Bank enum
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass

from .constants import Bank, lookup_bank

log = logging.getLogger(__name__)

# =========================================================================
# Config file location (XDG-compliant)
# =========================================================================

_XDG_CONFIG = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
CONFIG_DIR = os.path.join(_XDG_CONFIG, 'drive64')
CONFIG_PATH = os.path.join(CONFIG_DIR, 'config.json')


# =========================================================================
# Low-level config persistence
# =========================================================================

def load_config(path: str | None = None) -> dict:
    """Load user config from disk. Returns empty dict on missing/corrupt file."""
    try:
        with open(path or CONFIG_PATH, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config(config: dict, path: str | None = None):
    """Save user config to disk."""
    path = path or CONFIG_PATH
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        json.dump(config, f, indent=2)


# =========================================================================
# Settings
# =========================================================================

@dataclass
class Settings:
    """Link tuning and CLI defaults."""
    read_timeout_ms: int = 5000
    write_timeout_ms: int = 5000
    latency_timer: int = 255
    default_bank: Bank = Bank.CARTROM

    @classmethod
    def from_config(cls, config: dict) -> Settings:
        settings = cls()
        for key in ('read_timeout_ms', 'write_timeout_ms', 'latency_timer'):
            if key not in config:
                continue
            try:
                setattr(settings, key, int(config[key]))
            except (TypeError, ValueError):
                log.warning("Ignoring invalid %s in config: %r", key, config[key])
        if not 1 <= settings.latency_timer <= 255:
            log.warning("latency_timer %d out of range, using 255", settings.latency_timer)
            settings.latency_timer = 255

        bank = config.get('default_bank')
        if bank is not None:
            resolved = lookup_bank(str(bank))
            if resolved is None:
                log.warning("Ignoring unknown default_bank in config: %r", bank)
            else:
                settings.default_bank = resolved
        return settings

    def to_config(self) -> dict:
        data = asdict(self)
        data['default_bank'] = int(self.default_bank)
        return data


def load_settings(path: str | None = None) -> Settings:
    """Settings from the config file, defaults for anything missing."""
    return Settings.from_config(load_config(path))
