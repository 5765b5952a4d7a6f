from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

from termfeed.errors import PersistenceCorrupt
from termfeed.models import FeedInfo, SavedState

logger = logging.getLogger(__name__)

STATE_VERSION = 3
CORRUPT_STATE_MESSAGE = "Feeds data was corrupted and has been cleared. Starting fresh."


def write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def _string_set(raw: Any, key: str) -> set[str]:
    if not isinstance(raw, list) or not all(isinstance(value, str) for value in raw):
        raise ValueError(f"{key} must be a list of strings")
    return set(raw)


def _url_list(raw: Any) -> list[FeedInfo]:
    if not isinstance(raw, list) or not all(isinstance(url, str) for url in raw):
        raise ValueError("feeds must be a list of URLs")
    return [FeedInfo(url=url, title=url, category=None) for url in raw]


def decode_current(data: Any) -> SavedState:
    if not isinstance(data, dict):
        raise ValueError("state root must be an object")
    version = data.get("version", STATE_VERSION)
    if version != STATE_VERSION:
        raise ValueError(f"unsupported state version {version!r}")
    raw_feeds = data["feeds"]
    if not isinstance(raw_feeds, list):
        raise ValueError("feeds must be a list")
    feeds: list[FeedInfo] = []
    for raw in raw_feeds:
        if not isinstance(raw, dict) or not isinstance(raw.get("url"), str):
            raise ValueError("feed records need a url")
        category = raw.get("category")
        if category is not None and not isinstance(category, str):
            raise ValueError("category must be a string or null")
        title = raw.get("title")
        feeds.append(
            FeedInfo(
                url=raw["url"],
                title=title if isinstance(title, str) and title else raw["url"],
                category=category or None,
            )
        )
    return SavedState(
        feeds=feeds,
        read_items=_string_set(data.get("read_items", []), "read_items"),
        favorites=_string_set(data.get("favorites", []), "favorites"),
    )


def decode_urls_with_favorites(data: Any) -> SavedState:
    if not isinstance(data, dict) or "favorites" not in data:
        raise ValueError("not a url list with favorites")
    return SavedState(
        feeds=_url_list(data["feeds"]),
        read_items=_string_set(data["read_items"], "read_items"),
        favorites=_string_set(data["favorites"], "favorites"),
    )


def decode_urls_only(data: Any) -> SavedState:
    if not isinstance(data, dict):
        raise ValueError("state root must be an object")
    return SavedState(
        feeds=_url_list(data["feeds"]),
        read_items=_string_set(data.get("read_items", []), "read_items"),
    )


# Newest format first. Each decoder raises on anything it does not recognise.
STATE_DECODERS: tuple[tuple[str, Callable[[Any], SavedState]], ...] = (
    ("current", decode_current),
    ("urls-with-favorites", decode_urls_with_favorites),
    ("urls-only", decode_urls_only),
)


def decode_state(text: str) -> SavedState:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise PersistenceCorrupt(f"state file is not valid JSON: {exc}") from exc
    failures: list[str] = []
    for name, decoder in STATE_DECODERS:
        try:
            state = decoder(data)
        except (KeyError, TypeError, ValueError) as exc:
            failures.append(f"{name}: {exc}")
            continue
        if name != "current":
            logger.info("Migrated saved state from %s format", name)
        return state
    raise PersistenceCorrupt("; ".join(failures))


def encode_state(state: SavedState) -> dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "feeds": [
            {"url": feed.url, "title": feed.title, "category": feed.category}
            for feed in state.feeds
        ],
        "read_items": sorted(state.read_items),
        "favorites": sorted(state.favorites),
    }


class PersistentStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.warning: str | None = None

    def load(self) -> SavedState:
        self.warning = None
        if not self.path.exists():
            return SavedState()
        try:
            return decode_state(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, PersistenceCorrupt) as exc:
            logger.warning("Saved state %s unreadable: %s", self.path, exc)
            self._keep_corrupt_copy()
            self.warning = CORRUPT_STATE_MESSAGE
            return SavedState()

    def save(self, state: SavedState) -> None:
        write_json_atomic(self.path, encode_state(state))
        logger.debug("Saved %d feeds to %s", len(state.feeds), self.path)

    def _keep_corrupt_copy(self) -> None:
        backup = self.path.with_name(f"{self.path.name}.corrupt")
        try:
            shutil.copyfile(self.path, backup)
        except OSError as exc:
            logger.warning("Could not keep a copy of %s: %s", self.path, exc)
