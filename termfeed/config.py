from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from rich.color import Color, ColorParseError

from termfeed.errors import ConfigInvalid
from termfeed.keys import DEFAULT_KEYBINDINGS

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT_SECS = 30
DEFAULT_CACHE_DURATION_MINS = 60
DEFAULT_AUTO_REFRESH_MINS = 0

# Color names accepted in config.json that rich spells differently.
COLOR_ALIASES = {
    "dark_gray": "bright_black",
    "dark_grey": "bright_black",
    "gray": "grey70",
    "grey": "grey70",
    "light_red": "bright_red",
    "light_green": "bright_green",
    "light_yellow": "bright_yellow",
    "light_blue": "bright_blue",
    "light_magenta": "bright_magenta",
    "light_cyan": "bright_cyan",
    "reset": "default",
}


@dataclass
class Theme:
    primary: str = "green"
    secondary: str = "yellow"
    text: str = "white"
    muted: str = "dark_gray"
    error: str = "red"
    highlight: str = "cyan"
    description: str = "gray"
    category: str = "magenta"

    @classmethod
    def dark(cls) -> Theme:
        return cls()

    @classmethod
    def light(cls) -> Theme:
        return cls(
            primary="blue",
            secondary="magenta",
            text="black",
            muted="dark_gray",
            error="red",
            highlight="blue",
            description="dark_gray",
            category="magenta",
        )

    def style(self, role: str) -> str:
        return to_rich_color(getattr(self, role))


THEME_PRESETS = {"dark": Theme.dark, "light": Theme.light}
THEME_ROLES = tuple(f.name for f in fields(Theme))


def to_rich_color(raw: str) -> str:
    name = raw.strip().lower()
    name = COLOR_ALIASES.get(name, name)
    try:
        Color.parse(name)
    except ColorParseError:
        logger.warning("Unknown color %r, using terminal default", raw)
        return "default"
    return name


@dataclass
class Config:
    http_timeout_secs: int = DEFAULT_HTTP_TIMEOUT_SECS
    cache_duration_mins: int = DEFAULT_CACHE_DURATION_MINS
    auto_refresh_mins: int = DEFAULT_AUTO_REFRESH_MINS
    mark_read_on_scroll: bool = False
    notifications_enabled: bool = False
    theme: Theme = field(default_factory=Theme)
    keybindings: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_KEYBINDINGS))

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_duration_mins * 60.0

    @property
    def auto_refresh_seconds(self) -> float:
        return self.auto_refresh_mins * 60.0


def _read_int(data: dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigInvalid(f"{key} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigInvalid(f"{key} must be >= {minimum}")
    return value


def _read_bool(data: dict[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ConfigInvalid(f"{key} must be true or false")
    return value


def _read_theme(raw: Any) -> Theme:
    if raw is None:
        return Theme()
    if isinstance(raw, str):
        preset = THEME_PRESETS.get(raw.strip().lower())
        if preset is None:
            raise ConfigInvalid(f"Unknown theme preset '{raw}'. Valid: {', '.join(THEME_PRESETS)}")
        return preset()
    if not isinstance(raw, dict):
        raise ConfigInvalid("theme must be a preset name or an object of role colors")
    base_name = raw.get("preset", "dark")
    base = THEME_PRESETS.get(str(base_name).lower())
    if base is None:
        raise ConfigInvalid(f"Unknown theme preset '{base_name}'")
    theme = base()
    for role in THEME_ROLES:
        if role not in raw:
            continue
        if not isinstance(raw[role], str):
            raise ConfigInvalid(f"theme.{role} must be a color name or hex string")
        setattr(theme, role, raw[role])
    return theme


def _read_keybindings(raw: Any) -> dict[str, str]:
    merged = dict(DEFAULT_KEYBINDINGS)
    if raw is None:
        return merged
    if not isinstance(raw, dict):
        raise ConfigInvalid("keybindings must be an object of action -> keys")
    for action, keys in raw.items():
        if not isinstance(keys, str):
            raise ConfigInvalid(f"keybindings.{action} must be a comma-separated string")
        if action not in DEFAULT_KEYBINDINGS:
            logger.warning("Ignoring keybinding for unknown action %r", action)
            continue
        merged[action] = keys
    return merged


def parse_config(data: Any) -> Config:
    if not isinstance(data, dict):
        raise ConfigInvalid("config root must be a JSON object")
    return Config(
        http_timeout_secs=_read_int(data, "http_timeout_secs", DEFAULT_HTTP_TIMEOUT_SECS, 1),
        cache_duration_mins=_read_int(data, "cache_duration_mins", DEFAULT_CACHE_DURATION_MINS, 0),
        auto_refresh_mins=_read_int(data, "auto_refresh_mins", DEFAULT_AUTO_REFRESH_MINS, 0),
        mark_read_on_scroll=_read_bool(data, "mark_read_on_scroll"),
        notifications_enabled=_read_bool(data, "notifications_enabled"),
        theme=_read_theme(data.get("theme")),
        keybindings=_read_keybindings(data.get("keybindings")),
    )


def load_config(path: Path) -> Config:
    if not path.exists():
        logger.warning("Config file %s not found, using defaults", path)
        return Config()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return parse_config(data)
    except (OSError, ValueError, ConfigInvalid) as exc:
        logger.warning("Config file %s is invalid (%s), using defaults", path, exc)
        return Config()

