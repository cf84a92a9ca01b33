#!/usr/bin/env python3
"""
User settings and last connected controller, stored as JSON in the app config dir.
"""

import json
import os
import sys

VERSION = os.environ.get("VERSION", "1.0.0")

DEFAULT_SETTINGS = {
    "deadzone_mode": "axis",
    "outer_deadzone": True,
    "poll_interval": 0.016,
    "debug": False,
}


def _storage_dir():
    """Return config directory for this app."""
    if sys.platform == "darwin":
        base = os.path.expanduser("~/Library/Application Support")
        return os.path.join(base, "JoyCal")
    return os.path.expanduser("~/.config/joycal")


def _settings_path():
    return os.path.join(_storage_dir(), "settings.json")


def _last_connected_path():
    return os.path.join(_storage_dir(), "last_connected.json")


def _load_json(path):
    try:
        with open(path, "r") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else None
    except (FileNotFoundError, json.JSONDecodeError):
        return None


def _save_json(path, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def load_settings():
    """Stored settings merged over the defaults. Unknown keys are dropped."""
    settings = dict(DEFAULT_SETTINGS)
    stored = _load_json(_settings_path()) or {}
    for key in DEFAULT_SETTINGS:
        if key in stored:
            settings[key] = stored[key]
    if settings["deadzone_mode"] not in ("axis", "diagonal"):
        settings["deadzone_mode"] = DEFAULT_SETTINGS["deadzone_mode"]
    try:
        settings["poll_interval"] = max(0.001, float(settings["poll_interval"]))
    except (TypeError, ValueError):
        settings["poll_interval"] = DEFAULT_SETTINGS["poll_interval"]
    return settings


def save_settings(settings):
    _save_json(_settings_path(), {k: settings[k] for k in DEFAULT_SETTINGS if k in settings})


def get_last_connected():
    """Return {identity, firmware, mac} of the last controller, or None."""
    return _load_json(_last_connected_path())


def set_last_connected(identity, firmware=None, mac=None):
    """Record the last connected controller (identity name, e.g. 'PRO')."""
    _save_json(_last_connected_path(), {"identity": identity, "firmware": firmware, "mac": mac})
