from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "termfeed"


def _base_dir(xdg_var: str, fallback: str, home_subdir: str) -> Path:
    override = os.getenv("TERMFEED_HOME", "").strip()
    if override:
        return Path(override).expanduser() / home_subdir
    xdg = os.getenv(xdg_var, "").strip()
    if xdg:
        return Path(xdg).expanduser() / APP_NAME
    return Path.home() / fallback / APP_NAME


def config_dir() -> Path:
    return _base_dir("XDG_CONFIG_HOME", ".config", "config")


def data_dir() -> Path:
    return _base_dir("XDG_DATA_HOME", ".local/share", "data")


def cache_dir() -> Path:
    return _base_dir("XDG_CACHE_HOME", ".cache", "cache")


def config_path() -> Path:
    return config_dir() / "config.json"


def state_path() -> Path:
    return config_dir() / "feeds.json"


def opml_path() -> Path:
    return config_dir() / "feeds.opml"


def log_path() -> Path:
    return data_dir() / "logs" / f"{APP_NAME}.log"


def exports_dir() -> Path:
    return data_dir() / "exports"


def feed_cache_dir() -> Path:
    return cache_dir() / "feed_cache"
