from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import requests

from termfeed.errors import FetchError, FetchErrorKind
from termfeed.events import EventDispatcher, FetchCompleted
from termfeed.feeds import HttpGet, fetch_feed
from termfeed.models import FetchErr, FetchOk, FetchResult

logger = logging.getLogger(__name__)


class FetchOrchestrator:
    """Runs feed retrievals on background threads, at most one per URL.

    Results are only ever handed back as FetchCompleted events; the worker
    threads never see application state.
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        timeout_seconds: float,
        http_get: HttpGet = requests.get,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.dispatcher = dispatcher
        self.timeout_seconds = timeout_seconds
        self.http_get = http_get
        self.clock = clock
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def in_flight(self, feed_url: str | None = None) -> bool:
        with self._lock:
            if feed_url is None:
                return bool(self._in_flight)
            return feed_url in self._in_flight

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def request(self, feed_url: str) -> bool:
        with self._lock:
            if feed_url in self._in_flight:
                logger.debug("Fetch already in flight for %s, dropping request", feed_url)
                return False
            self._in_flight.add(feed_url)
        worker = threading.Thread(
            target=self._run,
            args=(feed_url, self.timeout_seconds),
            name=f"fetch:{feed_url}",
            daemon=True,
        )
        worker.start()
        return True

    def _run(self, feed_url: str, timeout_seconds: float) -> None:
        result = self.retrieve(feed_url, timeout_seconds)
        with self._lock:
            self._in_flight.discard(feed_url)
        self.dispatcher.post(FetchCompleted(result))

    def retrieve(self, feed_url: str, timeout_seconds: float) -> FetchResult:
        started = self.clock()
        try:
            items, feed_title = fetch_feed(feed_url, timeout_seconds, self.http_get)
        except FetchError as exc:
            elapsed_ms = int((self.clock() - started) * 1000)
            logger.warning("Fetch failed for %s (%s): %s", feed_url, exc.kind.value, exc.message)
            return FetchErr(feed_url=feed_url, kind=exc.kind, message=exc.message, elapsed_ms=elapsed_ms)
        except Exception as exc:
            elapsed_ms = int((self.clock() - started) * 1000)
            logger.error("Unexpected failure fetching %s", feed_url, exc_info=True)
            return FetchErr(
                feed_url=feed_url,
                kind=FetchErrorKind.NETWORK,
                message=f"{exc.__class__.__name__}: {exc}",
                elapsed_ms=elapsed_ms,
            )
        elapsed_ms = int((self.clock() - started) * 1000)
        logger.debug("Fetched %s: %d items in %dms", feed_url, len(items), elapsed_ms)
        return FetchOk(feed_url=feed_url, items=tuple(items), feed_title=feed_title, elapsed_ms=elapsed_ms)
