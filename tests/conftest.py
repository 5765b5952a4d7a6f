from __future__ import annotations

from datetime import datetime, timezone

import pytest

from termfeed.cache import FeedCache
from termfeed.config import Config
from termfeed.core import AppCore
from termfeed.models import CachedFeed, FeedInfo, FeedItem
from termfeed.store import PersistentStore

FEED_A = "https://a.example/feed.xml"
FEED_B = "https://b.example/rss"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    def __init__(self) -> None:
        self.requests: list[str] = []
        self.outstanding: set[str] = set()
        self.timeout_seconds = 30

    def request(self, feed_url: str) -> bool:
        if feed_url in self.outstanding:
            return False
        self.outstanding.add(feed_url)
        self.requests.append(feed_url)
        return True

    def complete(self, feed_url: str) -> None:
        self.outstanding.discard(feed_url)

    def in_flight(self, feed_url: str | None = None) -> bool:
        if feed_url is None:
            return bool(self.outstanding)
        return feed_url in self.outstanding

    def in_flight_count(self) -> int:
        return len(self.outstanding)


def make_item(
    item_id: str,
    feed_url: str = FEED_A,
    title: str | None = None,
    description: str = "",
    day: int = 1,
    read: bool = False,
    favorite: bool = False,
) -> FeedItem:
    return FeedItem(
        id=item_id,
        feed_url=feed_url,
        title=title or f"Item {item_id}",
        description=description,
        link=f"{feed_url}#{item_id}",
        published_at=datetime(2025, 1, day, 12, 0, tzinfo=timezone.utc),
        feed_title="Feed A" if feed_url == FEED_A else "Feed B",
        read=read,
        favorite=favorite,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def copied() -> list[str]:
    return []


@pytest.fixture
def notified() -> list[tuple[str, str]]:
    return []


def make_core(tmp_path, clock, fetcher, copied, notified, config: Config | None = None) -> AppCore:
    config = config or Config()
    return AppCore(
        config=config,
        store=PersistentStore(tmp_path / "feeds.json"),
        cache=FeedCache(config.cache_ttl_seconds, clock=clock, directory=tmp_path / "cache"),
        fetcher=fetcher,
        config_path=tmp_path / "config.json",
        opml_path=tmp_path / "feeds.opml",
        exports_dir=tmp_path / "exports",
        clock=clock,
        clipboard=copied.append,
        opener=lambda url: "",
        notifier=lambda summary, body: notified.append((summary, body)),
    )


@pytest.fixture
def core(tmp_path, clock, fetcher, copied, notified) -> AppCore:
    return make_core(tmp_path, clock, fetcher, copied, notified)


def populate(app: AppCore, items_by_feed: dict[str, list[FeedItem]]) -> None:
    for feed_url, items in items_by_feed.items():
        if app.feed_by_url(feed_url) is None:
            app.feeds.append(FeedInfo(url=feed_url, title="Feed A" if feed_url == FEED_A else "Feed B"))
        app.cache.put(feed_url, CachedFeed(feed_url=feed_url, items=items, fetched_at=app.clock()))
        for item in items:
            app.seen_ids.add(item.id)
            if item.read:
                app.read_ids.add(item.id)
            if item.favorite:
                app.favorite_ids.add(item.id)
    app.refresh_visible(reset=True)
