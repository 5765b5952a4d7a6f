from __future__ import annotations

import base64
import json
import logging
import time
from collections.abc import Callable, Iterator
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from termfeed.models import CachedFeed, FeedItem
from termfeed.store import write_json_atomic

logger = logging.getLogger(__name__)


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"


def cache_file_name(feed_url: str) -> str:
    encoded = base64.urlsafe_b64encode(feed_url.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{encoded}.json"


def item_to_dict(item: FeedItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "feed_url": item.feed_url,
        "title": item.title,
        "description": item.description,
        "link": item.link,
        "published_at": item.published_at.isoformat() if item.published_at else None,
        "feed_title": item.feed_title,
        "read": item.read,
        "favorite": item.favorite,
    }


def item_from_dict(raw: dict[str, Any]) -> FeedItem:
    published = raw.get("published_at")
    return FeedItem(
        id=raw["id"],
        feed_url=raw["feed_url"],
        title=raw.get("title", ""),
        description=raw.get("description", ""),
        link=raw.get("link", ""),
        published_at=datetime.fromisoformat(published) if published else None,
        feed_title=raw.get("feed_title", ""),
        read=bool(raw.get("read", False)),
        favorite=bool(raw.get("favorite", False)),
    )


class FeedCache:
    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
        directory: Path | None = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.directory = directory
        self._entries: dict[str, CachedFeed] = {}

    def __iter__(self) -> Iterator[CachedFeed]:
        return iter(list(self._entries.values()))

    def freshness(self, entry: CachedFeed) -> Freshness:
        if self.clock() - entry.fetched_at < self.ttl_seconds:
            return Freshness.FRESH
        return Freshness.STALE

    def get(self, feed_url: str) -> tuple[CachedFeed, Freshness] | None:
        entry = self._entries.get(feed_url)
        if entry is None:
            return None
        return entry, self.freshness(entry)

    def is_fresh(self, feed_url: str) -> bool:
        hit = self.get(feed_url)
        return hit is not None and hit[1] == Freshness.FRESH

    def put(self, feed_url: str, feed: CachedFeed) -> CachedFeed:
        previous = self._entries.get(feed_url)
        if previous is not None:
            flags = {item.id: (item.read, item.favorite) for item in previous.items}
            for item in feed.items:
                if item.id in flags:
                    was_read, was_favorite = flags[item.id]
                    item.read = item.read or was_read
                    item.favorite = item.favorite or was_favorite
        self._entries[feed_url] = feed
        return feed

    def remove(self, feed_url: str) -> None:
        self._entries.pop(feed_url, None)
        if self.directory is not None:
            (self.directory / cache_file_name(feed_url)).unlink(missing_ok=True)

    def load_from_disk(self, feed_urls: list[str]) -> int:
        if self.directory is None:
            return 0
        loaded = 0
        for feed_url in feed_urls:
            path = self.directory / cache_file_name(feed_url)
            if not path.exists():
                continue
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                entry = CachedFeed(
                    feed_url=raw["feed_url"],
                    items=[item_from_dict(item) for item in raw.get("items", [])],
                    fetched_at=float(raw["fetched_at"]),
                    feed_title=raw.get("feed_title", ""),
                )
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Dropping unreadable cache file %s: %s", path, exc)
                path.unlink(missing_ok=True)
                continue
            self._entries[feed_url] = entry
            loaded += 1
        logger.debug("Loaded %d cached feeds from %s", loaded, self.directory)
        return loaded

    def save_to_disk(self) -> None:
        if self.directory is None:
            return
        for entry in self._entries.values():
            write_json_atomic(
                self.directory / cache_file_name(entry.feed_url),
                {
                    "feed_url": entry.feed_url,
                    "feed_title": entry.feed_title,
                    "fetched_at": entry.fetched_at,
                    "items": [item_to_dict(item) for item in entry.items],
                },
            )
