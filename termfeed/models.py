from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from termfeed.errors import FetchErrorKind

SLOW_RESPONSE_MS = 5000


@dataclass
class FeedInfo:
    url: str
    title: str
    category: str | None = None


@dataclass
class FeedItem:
    id: str
    feed_url: str
    title: str
    description: str
    link: str
    published_at: datetime | None = None
    feed_title: str = ""
    read: bool = False
    favorite: bool = False

    def copy(self) -> FeedItem:
        return replace(self)


@dataclass
class CachedFeed:
    feed_url: str
    items: list[FeedItem]
    fetched_at: float
    feed_title: str = ""


@dataclass
class SavedState:
    feeds: list[FeedInfo] = field(default_factory=list)
    read_items: set[str] = field(default_factory=set)
    favorites: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class FetchOk:
    feed_url: str
    items: tuple[FeedItem, ...]
    feed_title: str
    elapsed_ms: int = 0


@dataclass(frozen=True)
class FetchErr:
    feed_url: str
    kind: FetchErrorKind
    message: str
    elapsed_ms: int = 0


FetchResult = FetchOk | FetchErr


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    SLOW = "slow"
    BROKEN = "broken"
    UNKNOWN = "unknown"


HEALTH_INDICATORS = {
    HealthStatus.HEALTHY: "●",
    HealthStatus.SLOW: "◐",
    HealthStatus.BROKEN: "✗",
    HealthStatus.UNKNOWN: "○",
}


@dataclass
class FeedHealth:
    last_success: float | None = None
    last_response_time_ms: int | None = None
    last_error: str | None = None
    consecutive_failures: int = 0

    @property
    def status(self) -> HealthStatus:
        if self.consecutive_failures > 0:
            return HealthStatus.BROKEN
        if self.last_response_time_ms is None:
            return HealthStatus.UNKNOWN
        if self.last_response_time_ms > SLOW_RESPONSE_MS:
            return HealthStatus.SLOW
        return HealthStatus.HEALTHY

    @property
    def indicator(self) -> str:
        return HEALTH_INDICATORS[self.status]

    def describe(self) -> str:
        status = self.status
        if status == HealthStatus.BROKEN:
            return f"Error: {self.last_error or 'unknown'}"
        if status == HealthStatus.SLOW:
            return f"Slow ({self.last_response_time_ms}ms)"
        if status == HealthStatus.HEALTHY:
            return f"OK ({self.last_response_time_ms}ms)"
        return "Not checked"

    def record_success(self, elapsed_ms: int, now: float) -> None:
        self.last_success = now
        self.last_response_time_ms = elapsed_ms
        self.last_error = None
        self.consecutive_failures = 0

    def record_failure(self, message: str) -> None:
        self.last_error = message
        self.consecutive_failures += 1
