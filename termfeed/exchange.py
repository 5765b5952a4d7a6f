from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from html import escape

from termfeed.feeds import is_valid_feed_url
from termfeed.models import FeedInfo, FeedItem

SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_-]+")


@dataclass
class ImportReport:
    added: list[FeedInfo] = field(default_factory=list)
    duplicates: int = 0
    invalid: int = 0


def feeds_to_url_list(feeds: list[FeedInfo]) -> str:
    return "\n".join(feed.url for feed in feeds)


def parse_url_list(text: str, existing: set[str]) -> ImportReport:
    report = ImportReport()
    seen = set(existing)
    for line in text.splitlines():
        url = line.strip()
        if not url:
            continue
        if url in seen:
            report.duplicates += 1
            continue
        if not is_valid_feed_url(url):
            report.invalid += 1
            continue
        seen.add(url)
        report.added.append(FeedInfo(url=url, title=url))
    return report


def _outline(feed: FeedInfo, indent: str) -> str:
    title = escape(feed.title or feed.url)
    return f'{indent}<outline type="rss" text="{title}" title="{title}" xmlUrl="{escape(feed.url)}" />'


def feeds_to_opml(feeds: list[FeedInfo], title: str = "termfeed RSS Feeds") -> str:
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<opml version="2.0">',
        f"  <head><title>{escape(title)}</title></head>",
        "  <body>",
    ]
    lines.extend(_outline(feed, "    ") for feed in feeds if not feed.category)
    categories = sorted({feed.category for feed in feeds if feed.category})
    for category in categories:
        lines.append(f'    <outline text="{escape(category)}" title="{escape(category)}">')
        lines.extend(_outline(feed, "      ") for feed in feeds if feed.category == category)
        lines.append("    </outline>")
    lines.extend(["  </body>", "</opml>"])
    return "\n".join(lines) + "\n"


def _walk_outlines(parent: ET.Element, category: str | None):
    for outline in parent.findall("outline"):
        url = (outline.get("xmlUrl") or outline.get("xmlurl") or "").strip()
        label = (outline.get("title") or outline.get("text") or "").strip()
        if url:
            yield url, label, category
        else:
            yield from _walk_outlines(outline, label or category)


def opml_to_feeds(text: str, existing: set[str]) -> ImportReport:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise ValueError(f"Malformed OPML: {exc}") from exc
    body = root.find("body")
    report = ImportReport()
    seen = set(existing)
    for url, label, category in _walk_outlines(body if body is not None else root, None):
        if url in seen:
            report.duplicates += 1
            continue
        if not is_valid_feed_url(url):
            report.invalid += 1
            continue
        seen.add(url)
        report.added.append(FeedInfo(url=url, title=label or url, category=category))
    return report


def format_date(value: datetime | None) -> str:
    if value is None:
        return "Unknown date"
    return value.strftime("%Y-%m-%d %H:%M UTC")


def item_to_markdown(item: FeedItem) -> str:
    status = "Read" if item.read else "Unread"
    if item.favorite:
        status += " | ★ Favorited"
    lines = [
        f"# {item.title}",
        "",
        f"**Date:** {format_date(item.published_at)}",
        f"**Link:** {item.link or '-'}",
        f"**Status:** {status}",
    ]
    if item.feed_title:
        lines.append(f"**Feed:** {item.feed_title}")
    lines.extend(["", "---", "", item.description or "_No description._", ""])
    return "\n".join(lines)


def article_filename(item: FeedItem, now: datetime) -> str:
    safe_title = SAFE_FILENAME_RE.sub("_", item.title).strip("_")[:50] or "article"
    return f"{safe_title}_{now.strftime('%Y%m%d_%H%M%S')}.md"
