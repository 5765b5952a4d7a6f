from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

# Tokens produced by the terminal input worker for non-printable keys.
ENTER = "ENTER"
ESC = "ESC"
BACKSPACE = "BACKSPACE"
TAB = "TAB"
SHTAB = "SHTAB"
UP = "UP"
DOWN = "DOWN"
LEFT = "LEFT"
RIGHT = "RIGHT"
PGUP = "PGUP"
PGDN = "PGDN"
HOME = "HOME"
END = "END"
INSERT = "INSERT"
DELETE = "DELETE"
CTRL_D = "CTRL_D"
QUIT = "QUIT"

NAMED_KEYS: dict[str, str] = {
    "enter": ENTER,
    "return": ENTER,
    "esc": ESC,
    "escape": ESC,
    "backspace": BACKSPACE,
    "tab": TAB,
    "backtab": SHTAB,
    "up": UP,
    "down": DOWN,
    "left": LEFT,
    "right": RIGHT,
    "pageup": PGUP,
    "pgup": PGUP,
    "pagedown": PGDN,
    "pgdn": PGDN,
    "pgdown": PGDN,
    "home": HOME,
    "end": END,
    "insert": INSERT,
    "delete": DELETE,
    "del": DELETE,
    "space": " ",
}

DISPLAY_NAMES = {
    ENTER: "Enter",
    ESC: "Esc",
    BACKSPACE: "Backspace",
    TAB: "Tab",
    SHTAB: "BackTab",
    UP: "↑",
    DOWN: "↓",
    LEFT: "←",
    RIGHT: "→",
    PGUP: "PgUp",
    PGDN: "PgDn",
    HOME: "Home",
    END: "End",
    INSERT: "Insert",
    DELETE: "Del",
    " ": "Space",
}

DEFAULT_KEYBINDINGS: dict[str, str] = {
    "move_up": "k,Up",
    "move_down": "j,Down",
    "page_up": "PageUp",
    "page_down": "PageDown",
    "scroll_to_top": "g",
    "scroll_to_bottom": "G",
    "select": "Enter",
    "open_in_browser": "o",
    "copy_link": "O",
    "toggle_read": "r",
    "mark_all_read": "R",
    "toggle_favorite": "f",
    "toggle_favorites_view": "F",
    "refresh": "c",
    "start_search": "/",
    "toggle_unread_only": "u",
    "open_preview": "p",
    "open_feed_manager": "m",
    "add_feed": "a",
    "delete_feed": "d",
    "set_category": "t",
    "export_clipboard": "e",
    "export_opml": "E",
    "import_clipboard": "i",
    "import_opml": "I",
    "export_article": "s",
    "save_article": "S",
    "command": ":",
    "help": "?",
    "quit": "q",
}


def parse_key(name: str) -> str | None:
    """Turn a configured key name into the token the input worker emits.

    Single characters stay case sensitive, longer names are matched case-insensitively.
    """
    stripped = name.strip()
    if not stripped:
        return None
    if len(stripped) == 1:
        return stripped
    return NAMED_KEYS.get(stripped.lower())


def parse_key_list(raw: str) -> tuple[str, ...]:
    keys: list[str] = []
    for part in raw.split(","):
        token = parse_key(part)
        if token is None:
            if part.strip():
                logger.warning("Ignoring unknown key name %r", part.strip())
            continue
        if token not in keys:
            keys.append(token)
    return tuple(keys)


def display_key(token: str) -> str:
    return DISPLAY_NAMES.get(token, token)


class KeyMap:
    def __init__(self, bindings: dict[str, str] | None = None) -> None:
        merged = dict(DEFAULT_KEYBINDINGS)
        if bindings:
            merged.update(bindings)
        self.bindings: dict[str, tuple[str, ...]] = {}
        for action, raw in merged.items():
            keys = parse_key_list(raw)
            if not keys:
                logger.warning("No valid keys for %s, using default %r", action, DEFAULT_KEYBINDINGS.get(action))
                keys = parse_key_list(DEFAULT_KEYBINDINGS.get(action, ""))
            self.bindings[action] = keys

    def matches(self, key: str, action: str) -> bool:
        return key in self.bindings.get(action, ())

    def action_for(self, key: str, actions: tuple[str, ...] | None = None) -> str | None:
        candidates = actions if actions is not None else tuple(self.bindings)
        for action in candidates:
            if self.matches(key, action):
                return action
        return None

    def describe(self, action: str) -> str:
        return "/".join(display_key(key) for key in self.bindings.get(action, ()))
