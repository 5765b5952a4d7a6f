from __future__ import annotations

import hashlib
import html
import queue
import re
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from time import struct_time
from typing import Any
from urllib.parse import urlparse

import feedparser
import requests
from dateutil import parser as date_parser

from termfeed import __version__
from termfeed.errors import NetworkError, NetworkTimeout, ParseFailure
from termfeed.models import FeedItem

HTML_TAG_RE = re.compile(r"<[^>]+>")
BLOCK_TAG_RE = re.compile(r"<\s*(br|/p|/div|/li|/h[1-6])\b[^>]*>", re.IGNORECASE)
WHITESPACE_RE = re.compile(r"[ \t\r\f\v]+")
BLANK_LINES_RE = re.compile(r"\n\s*\n+")
USER_AGENT = f"termfeed/{__version__} (+https://pypi.org/project/termfeed/)"

CHUNK_SIZE = 8192

HttpGet = Callable[..., Any]


def normalize_text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, (list, tuple)):
        raw = " ".join(str(piece) for piece in raw)
    if not isinstance(raw, str):
        raw = str(raw)
    unescaped = html.unescape(raw)
    no_html = HTML_TAG_RE.sub(" ", unescaped)
    return WHITESPACE_RE.sub(" ", no_html.replace("\n", " ")).strip()


def html_to_text(raw: Any) -> str:
    if not raw:
        return ""
    with_breaks = BLOCK_TAG_RE.sub("\n", str(raw))
    no_html = HTML_TAG_RE.sub(" ", with_breaks)
    lines = [WHITESPACE_RE.sub(" ", line).strip() for line in html.unescape(no_html).split("\n")]
    return BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def parse_date(raw: Any) -> datetime | None:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        parsed = raw
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    if isinstance(raw, (tuple, struct_time)):
        try:
            parsed = datetime(*list(raw)[:6], tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (TypeError, ValueError):
            return None
    try:
        parsed = date_parser.parse(str(raw))
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_valid_feed_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def make_item_id(feed_url: str, entry_key: str) -> str:
    digest = hashlib.sha1(f"{feed_url}\n{entry_key}".encode("utf-8")).hexdigest()
    return digest[:20]


def entry_to_item(feed_url: str, feed_title: str, entry: Any) -> FeedItem:
    title = normalize_text(entry.get("title")) or "(untitled)"
    link = str(entry.get("link") or "").strip()
    published = parse_date(
        entry.get("published_parsed")
        or entry.get("updated_parsed")
        or entry.get("published")
        or entry.get("updated")
    )
    body = entry.get("summary") or ""
    contents = entry.get("content") or []
    if contents and len(str(contents[0].get("value", ""))) > len(body):
        body = contents[0].get("value", "")
    entry_key = str(entry.get("id") or link or f"{title}|{published.isoformat() if published else ''}")
    return FeedItem(
        id=make_item_id(feed_url, entry_key),
        feed_url=feed_url,
        title=title,
        description=html_to_text(body),
        link=link,
        published_at=published,
        feed_title=feed_title,
    )


def sort_newest_first(items: list[FeedItem]) -> list[FeedItem]:
    dated = sorted(
        (item for item in items if item.published_at is not None),
        key=lambda item: item.published_at,
        reverse=True,
    )
    undated = [item for item in items if item.published_at is None]
    return dated + undated


def parse_feed_document(feed_url: str, content: bytes) -> tuple[list[FeedItem], str]:
    parsed = feedparser.parse(content)
    if parsed.bozo and not parsed.entries:
        reason = getattr(parsed, "bozo_exception", None) or "not a feed document"
        raise ParseFailure(f"Could not parse feed: {reason}")
    if not parsed.entries and not parsed.get("version"):
        raise ParseFailure("Could not parse feed: no feed elements found")
    feed_title = normalize_text(parsed.feed.get("title")) or feed_url
    items = [entry_to_item(feed_url, feed_title, entry) for entry in parsed.entries]
    return sort_newest_first(items), feed_title


def download(
    feed_url: str,
    timeout_seconds: float,
    http_get: HttpGet,
    cancelled: threading.Event,
) -> bytes:
    response = http_get(
        feed_url,
        timeout=timeout_seconds,
        headers={"User-Agent": USER_AGENT},
        stream=True,
    )
    try:
        response.raise_for_status()
        body = bytearray()
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if cancelled.is_set():
                break
            body.extend(chunk)
        return bytes(body)
    finally:
        response.close()


def fetch_feed(
    feed_url: str,
    timeout_seconds: float,
    http_get: HttpGet = requests.get,
) -> tuple[list[FeedItem], str]:
    """Download and parse one feed, giving up once ``timeout_seconds`` have passed.

    The requests timeout only bounds each socket operation, so a server that
    trickles its body would never trip it. The download runs on a helper thread
    and the whole retrieval is bounded by waiting on its outcome.
    """
    outcome: queue.Queue[tuple[bytes | None, BaseException | None]] = queue.Queue()
    cancelled = threading.Event()

    def run() -> None:
        try:
            outcome.put((download(feed_url, timeout_seconds, http_get, cancelled), None))
        except Exception as exc:
            outcome.put((None, exc))

    threading.Thread(target=run, name=f"download:{feed_url}", daemon=True).start()
    try:
        content, error = outcome.get(timeout=timeout_seconds)
    except queue.Empty:
        # the helper stops and closes the response after its current chunk
        cancelled.set()
        raise NetworkTimeout(f"Timed out after {timeout_seconds:g}s") from None
    if isinstance(error, requests.Timeout):
        raise NetworkTimeout(f"Timed out after {timeout_seconds:g}s") from error
    if isinstance(error, requests.RequestException):
        raise NetworkError(str(error) or error.__class__.__name__) from error
    if error is not None:
        raise error
    return parse_feed_document(feed_url, content)
