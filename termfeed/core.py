from __future__ import annotations

import logging
import subprocess
import sys
import time
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from termfeed import keys
from termfeed.cache import FeedCache
from termfeed.clipboard import copy_to_clipboard
from termfeed.config import Config, load_config
from termfeed.errors import FetchErrorKind
from termfeed.events import Event, FetchCompleted, KeyPressed, Tick
from termfeed.exchange import (
    ImportReport,
    article_filename,
    feeds_to_opml,
    feeds_to_url_list,
    item_to_markdown,
    opml_to_feeds,
    parse_url_list,
)
from termfeed.feeds import is_valid_feed_url, sort_newest_first
from termfeed.fetcher import FetchOrchestrator
from termfeed.keys import KeyMap
from termfeed.models import CachedFeed, FeedHealth, FeedInfo, FeedItem, FetchErr, FetchOk, FetchResult, SavedState
from termfeed.notify import notify_in_background, summarize_new_items
from termfeed.store import PersistentStore
from termfeed.view import (
    PROMPT_LABELS,
    FeedRow,
    HelpEntry,
    ItemRow,
    ManagerPrompt,
    PreviewView,
    ViewMode,
    ViewModel,
)

logger = logging.getLogger(__name__)

STATUS_SECONDS = 5.0
DEFAULT_PAGE_SIZE = 10

LIST_MODES = frozenset({ViewMode.FEED_LIST, ViewMode.FAVORITES})
TEXT_INPUT_MODES = frozenset({ViewMode.SEARCH, ViewMode.COMMAND, ViewMode.IMPORT_EXPORT})
# Modes that return to the mode they were opened from.
OVERLAY_MODES = frozenset({ViewMode.SEARCH, ViewMode.PREVIEW, ViewMode.COMMAND, ViewMode.HELP})

TRANSITIONS: dict[ViewMode, frozenset[ViewMode]] = {
    ViewMode.FEED_LIST: frozenset(
        {ViewMode.FEED_MANAGER, ViewMode.FAVORITES, ViewMode.SEARCH, ViewMode.PREVIEW, ViewMode.COMMAND, ViewMode.HELP}
    ),
    ViewMode.FAVORITES: frozenset(
        {ViewMode.FEED_LIST, ViewMode.FEED_MANAGER, ViewMode.SEARCH, ViewMode.PREVIEW, ViewMode.COMMAND, ViewMode.HELP}
    ),
    ViewMode.FEED_MANAGER: frozenset(
        {ViewMode.FEED_LIST, ViewMode.FAVORITES, ViewMode.COMMAND, ViewMode.HELP, ViewMode.IMPORT_EXPORT}
    ),
    ViewMode.SEARCH: frozenset({ViewMode.FEED_LIST, ViewMode.FAVORITES}),
    ViewMode.PREVIEW: frozenset({ViewMode.FEED_LIST, ViewMode.FAVORITES}),
    ViewMode.HELP: frozenset({ViewMode.FEED_LIST, ViewMode.FAVORITES, ViewMode.FEED_MANAGER}),
    ViewMode.COMMAND: frozenset({ViewMode.FEED_LIST, ViewMode.FAVORITES, ViewMode.FEED_MANAGER}),
    ViewMode.IMPORT_EXPORT: frozenset({ViewMode.FEED_MANAGER}),
}

HELP_SECTIONS: tuple[tuple[str, tuple[tuple[str, str], ...]], ...] = (
    (
        "Navigation",
        (
            ("move_up", "Move up"),
            ("move_down", "Move down"),
            ("page_up", "Page up"),
            ("page_down", "Page down"),
            ("scroll_to_top", "Go to top"),
            ("scroll_to_bottom", "Go to bottom"),
        ),
    ),
    (
        "Items",
        (
            ("select", "Preview item / show feed"),
            ("open_preview", "Preview item"),
            ("open_in_browser", "Open in browser"),
            ("copy_link", "Copy link"),
            ("toggle_read", "Toggle read"),
            ("mark_all_read", "Mark all visible read"),
            ("toggle_favorite", "Toggle favorite"),
            ("toggle_favorites_view", "Favorites view"),
            ("export_article", "Copy article as markdown"),
            ("save_article", "Save article to file"),
        ),
    ),
    (
        "Search",
        (
            ("start_search", "Search titles and descriptions"),
            ("toggle_unread_only", "Unread only"),
            ("refresh", "Refresh all feeds"),
        ),
    ),
    (
        "Feed manager",
        (
            ("open_feed_manager", "Open feed manager"),
            ("add_feed", "Add feed"),
            ("delete_feed", "Delete feed"),
            ("set_category", "Set category"),
            ("export_clipboard", "Copy feed URLs"),
            ("import_clipboard", "Import pasted URLs"),
            ("export_opml", "Export OPML"),
            ("import_opml", "Import OPML"),
        ),
    ),
    (
        "Other",
        (
            ("command", "Command line (:w :q :wq :refresh :help)"),
            ("help", "Toggle help"),
            ("quit", "Quit"),
        ),
    ),
)


class IllegalTransition(RuntimeError):
    pass


@dataclass
class StatusMessage:
    text: str
    error: bool
    expires_at: float


def clamp_selection(index: int | None, length: int) -> int | None:
    if length <= 0:
        return None
    if index is None or index < 0:
        return 0
    if index >= length:
        return length - 1
    return index


def cycle_selection(index: int | None, length: int, delta: int) -> int | None:
    if length <= 0:
        return None
    if index is None:
        return 0 if delta >= 0 else length - 1
    return (index + delta) % length


def apply_filters(items: list[FeedItem], query: str, unread_only: bool) -> list[FeedItem]:
    lowered = query.strip().lower()
    return [
        item
        for item in items
        if (not unread_only or not item.read)
        and (not lowered or lowered in item.title.lower() or lowered in item.description.lower())
    ]


def open_link(url: str) -> str:
    clean_url = url.strip()
    if not clean_url:
        return "No link available for selected item."
    try:
        if sys.platform == "darwin":
            subprocess.Popen(["open", clean_url], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            webbrowser.open(clean_url, new=2)
        return ""
    except (OSError, webbrowser.Error) as exc:
        return f"Failed to open link: {exc}"


def is_printable(key: str) -> bool:
    return len(key) == 1 and key.isprintable()


class AppCore:
    """Owns every piece of mutable session state.

    Only the consumer thread calls into this class, one event at a time.
    Fetch workers talk to it exclusively through FetchCompleted events.
    """

    def __init__(
        self,
        config: Config,
        store: PersistentStore,
        cache: FeedCache,
        fetcher: FetchOrchestrator,
        config_path: Path | None = None,
        opml_path: Path | None = None,
        exports_dir: Path | None = None,
        clock: Callable[[], float] = time.time,
        clipboard: Callable[[str], None] = copy_to_clipboard,
        opener: Callable[[str], str] = open_link,
        notifier: Callable[[str, str], None] = notify_in_background,
    ) -> None:
        self.config = config
        self.keymap = KeyMap(config.keybindings)
        self.store = store
        self.cache = cache
        self.fetcher = fetcher
        self.config_path = config_path
        self.opml_path = opml_path
        self.exports_dir = exports_dir
        self.clock = clock
        self.clipboard = clipboard
        self.opener = opener
        self.notifier = notifier

        self.running = True
        self.mode = ViewMode.FEED_LIST
        self.return_mode = ViewMode.FEED_LIST
        self.prompt: ManagerPrompt | None = None
        self.input_buffer = ""

        self.feeds: list[FeedInfo] = []
        self.read_ids: set[str] = set()
        self.favorite_ids: set[str] = set()
        self.health: dict[str, FeedHealth] = {}
        self.pending_new: set[str] = set()
        self.seen_ids: set[str] = set()

        self.search_query = ""
        self.unread_only = False
        self.feed_filter: str | None = None
        self.visible: list[FeedItem] = []
        self.selected: int | None = None
        self.manager_selected: int | None = None
        self.preview: FeedItem | None = None
        self.preview_scroll = 0
        self.page_size = DEFAULT_PAGE_SIZE

        self.status: StatusMessage | None = None
        self.last_refresh = clock()

    # -- startup and persistence ------------------------------------------

    def startup(self) -> None:
        saved = self.store.load()
        if self.store.warning:
            self.notify(self.store.warning, error=True)
        self.restore(saved)
        loaded = self.cache.load_from_disk([feed.url for feed in self.feeds])
        for entry in self.cache:
            self._apply_saved_flags(entry.items)
            self.seen_ids.update(item.id for item in entry.items)
        self.refresh_visible()
        logger.info("Started with %d feeds, %d cached", len(self.feeds), loaded)
        self.refresh(force=False)

    def restore(self, saved: SavedState) -> None:
        self.feeds = [FeedInfo(feed.url, feed.title, feed.category) for feed in saved.feeds]
        self.read_ids = set(saved.read_items)
        self.favorite_ids = set(saved.favorites)
        self.manager_selected = clamp_selection(self.manager_selected, len(self.feeds))

    def saved_state(self) -> SavedState:
        return SavedState(
            feeds=[FeedInfo(feed.url, feed.title, feed.category) for feed in self.feeds],
            read_items=set(self.read_ids),
            favorites=set(self.favorite_ids),
        )

    def save(self) -> bool:
        try:
            self.store.save(self.saved_state())
            self.cache.save_to_disk()
        except OSError as exc:
            logger.error("Saving state failed", exc_info=True)
            self.notify(f"Save failed: {exc}", error=True)
            return False
        return True

    def quit(self, save: bool = True) -> None:
        if save:
            self.save()
        self.running = False

    # -- event handling ---------------------------------------------------

    def handle_event(self, event: Event) -> None:
        if isinstance(event, KeyPressed):
            self.handle_key(event.key)
        elif isinstance(event, Tick):
            self.on_tick(event.now)
        elif isinstance(event, FetchCompleted):
            self.apply_fetch_result(event.result)

    def on_tick(self, now: float) -> None:
        if self.status is not None and now >= self.status.expires_at:
            self.status = None
        interval = self.config.auto_refresh_seconds
        if interval <= 0 or not self.feeds or self.in_text_input():
            return
        if now - self.last_refresh >= interval:
            logger.debug("Auto-refresh triggered")
            self.refresh(force=True)
            self.last_refresh = now

    def in_text_input(self) -> bool:
        return self.mode in TEXT_INPUT_MODES or self.prompt is not None

    def seconds_until_refresh(self) -> int | None:
        interval = self.config.auto_refresh_seconds
        if interval <= 0:
            return None
        return max(0, int(interval - (self.clock() - self.last_refresh)))

    def notify(self, text: str, error: bool = False) -> None:
        self.status = StatusMessage(text=text, error=error, expires_at=self.clock() + STATUS_SECONDS)
        if error:
            logger.warning("%s", text)

    def set_page_size(self, rows: int) -> None:
        self.page_size = max(1, rows)

    # -- mode transitions -------------------------------------------------

    def enter_mode(self, target: ViewMode) -> None:
        if target == self.mode:
            return
        if target not in TRANSITIONS[self.mode]:
            raise IllegalTransition(f"{self.mode.value} -> {target.value}")
        logger.debug("Mode %s -> %s", self.mode.value, target.value)
        if target in OVERLAY_MODES:
            self.return_mode = self.mode
        self.prompt = None
        previous = self.mode
        self.mode = target
        if target in LIST_MODES and previous in OVERLAY_MODES:
            self.refresh_visible(keep_id=self.selected_item_id())
        elif target in LIST_MODES:
            self.refresh_visible(reset=True)
        if target == ViewMode.FEED_MANAGER:
            self.manager_selected = clamp_selection(self.manager_selected, len(self.feeds))

    def return_to_prior(self) -> None:
        target = self.return_mode
        if target not in TRANSITIONS[self.mode]:
            target = ViewMode.FEED_LIST
        self.enter_mode(target)

    def list_mode(self) -> ViewMode:
        if self.mode in LIST_MODES or self.mode == ViewMode.FEED_MANAGER:
            return self.mode
        return self.return_mode

    # -- visible list and selection ---------------------------------------

    def base_items(self) -> list[FeedItem]:
        showing_favorites = self.list_mode() == ViewMode.FAVORITES
        items: list[FeedItem] = []
        for feed in self.feeds:
            if not showing_favorites and self.feed_filter and feed.url != self.feed_filter:
                continue
            hit = self.cache.get(feed.url)
            if hit is None:
                continue
            entry, _ = hit
            if showing_favorites:
                items.extend(item for item in entry.items if item.favorite)
            else:
                items.extend(entry.items)
        return sort_newest_first(items)

    def refresh_visible(self, keep_id: str | None = None, reset: bool = False, fallback: int | None = None) -> None:
        previous = self.selected
        self.visible = apply_filters(self.base_items(), self.search_query, self.unread_only)
        if reset:
            self.selected = 0 if self.visible else None
            return
        if keep_id is not None:
            for index, item in enumerate(self.visible):
                if item.id == keep_id:
                    self.selected = index
                    return
        self.selected = clamp_selection(fallback if fallback is not None else previous, len(self.visible))

    def selected_item(self) -> FeedItem | None:
        if self.selected is None or self.selected >= len(self.visible):
            return None
        return self.visible[self.selected]

    def selected_item_id(self) -> str | None:
        item = self.selected_item()
        return item.id if item else None

    def selected_feed(self) -> FeedInfo | None:
        feeds = self.manager_feeds()
        if self.manager_selected is None or self.manager_selected >= len(feeds):
            return None
        return feeds[self.manager_selected]

    def manager_feeds(self) -> list[FeedInfo]:
        return sorted(self.feeds, key=lambda feed: (feed.category or "", feed.title.lower()))

    def categories(self) -> list[str]:
        return sorted({feed.category for feed in self.feeds if feed.category})

    def select_next(self) -> None:
        if self.mode == ViewMode.FEED_MANAGER:
            self.manager_selected = cycle_selection(self.manager_selected, len(self.feeds), 1)
            return
        self.selected = cycle_selection(self.selected, len(self.visible), 1)
        if self.config.mark_read_on_scroll:
            item = self.selected_item()
            if item is not None and not item.read:
                self._set_read(item, True)

    def select_previous(self) -> None:
        if self.mode == ViewMode.FEED_MANAGER:
            self.manager_selected = cycle_selection(self.manager_selected, len(self.feeds), -1)
            return
        self.selected = cycle_selection(self.selected, len(self.visible), -1)

    def move_selection(self, delta: int) -> None:
        if self.mode == ViewMode.FEED_MANAGER:
            if self.manager_selected is not None:
                self.manager_selected = clamp_selection(self.manager_selected + delta, len(self.feeds))
            return
        if self.selected is not None:
            self.selected = clamp_selection(self.selected + delta, len(self.visible))

    def select_first(self) -> None:
        if self.mode == ViewMode.FEED_MANAGER:
            self.manager_selected = clamp_selection(0, len(self.feeds))
        else:
            self.selected = clamp_selection(0, len(self.visible))

    def select_last(self) -> None:
        if self.mode == ViewMode.FEED_MANAGER:
            self.manager_selected = clamp_selection(len(self.feeds) - 1, len(self.feeds))
        else:
            self.selected = clamp_selection(len(self.visible) - 1, len(self.visible))

    # -- item mutations ---------------------------------------------------

    def _apply_saved_flags(self, items: list[FeedItem]) -> None:
        for item in items:
            item.read = item.id in self.read_ids
            item.favorite = item.id in self.favorite_ids

    def _set_read(self, item: FeedItem, read: bool) -> None:
        item.read = read
        if read:
            self.read_ids.add(item.id)
        else:
            self.read_ids.discard(item.id)

    def _find_item(self, item_id: str) -> FeedItem | None:
        for entry in self.cache:
            for item in entry.items:
                if item.id == item_id:
                    return item
        return None

    def _target_item(self) -> FeedItem | None:
        if self.mode == ViewMode.PREVIEW and self.preview is not None:
            return self._find_item(self.preview.id) or self.preview
        return self.selected_item()

    def toggle_read(self) -> None:
        item = self._target_item()
        if item is None:
            return
        self._set_read(item, not item.read)
        if self.preview is not None and self.preview.id == item.id:
            self.preview.read = item.read
        if self.mode in LIST_MODES:
            self.refresh_visible(keep_id=item.id)

    def toggle_favorite(self) -> None:
        item = self._target_item()
        if item is None:
            return
        item.favorite = not item.favorite
        if item.favorite:
            self.favorite_ids.add(item.id)
        else:
            self.favorite_ids.discard(item.id)
        if self.preview is not None and self.preview.id == item.id:
            self.preview.favorite = item.favorite
        if self.mode == ViewMode.FAVORITES and not item.favorite:
            removed_at = self.selected if self.selected is not None else 0
            self.refresh_visible(fallback=max(removed_at - 1, 0))
            self.notify("Removed from favorites")
        elif self.mode in LIST_MODES:
            self.refresh_visible(keep_id=item.id)

    def mark_all_read(self) -> None:
        for item in self.visible:
            self._set_read(item, True)
        count = len(self.visible)
        self.refresh_visible(keep_id=self.selected_item_id())
        self.notify(f"Marked {count} items as read")

    def toggle_unread_only(self) -> None:
        self.unread_only = not self.unread_only
        self.refresh_visible(reset=True)
        self.notify("Showing unread items only" if self.unread_only else "Showing all items")

    def clear_filters(self) -> bool:
        if not (self.search_query or self.unread_only or self.feed_filter):
            return False
        self.search_query = ""
        self.unread_only = False
        self.feed_filter = None
        self.refresh_visible(reset=True)
        return True

    def open_preview(self) -> None:
        item = self.selected_item()
        if item is None:
            return
        self._set_read(item, True)
        self.preview = item.copy()
        self.preview_scroll = 0
        self.enter_mode(ViewMode.PREVIEW)

    def close_preview(self) -> None:
        self.preview = None
        self.preview_scroll = 0
        self.return_to_prior()

    def scroll_preview(self, delta: int) -> None:
        if self.preview is None:
            return
        max_scroll = max(0, len(self.preview.description.splitlines()) - 1)
        self.preview_scroll = max(0, min(max_scroll, self.preview_scroll + delta))

    def open_selected_link(self) -> None:
        item = self._target_item()
        if item is None:
            return
        error = self.opener(item.link)
        if error:
            self.notify(error, error=True)
            return
        self._set_read(item, True)
        if self.mode in LIST_MODES:
            self.refresh_visible(keep_id=item.id)

    def copy_link(self) -> None:
        item = self._target_item()
        if item is None or not item.link:
            self.notify("No link to copy", error=True)
            return
        self.clipboard(item.link)
        self.notify("Link copied to clipboard")

    def export_article(self, to_file: bool) -> None:
        item = self._target_item()
        if item is None:
            return
        markdown = item_to_markdown(item)
        if not to_file:
            self.clipboard(markdown)
            self.notify("Article copied to clipboard")
            return
        if self.exports_dir is None:
            self.notify("No export directory configured", error=True)
            return
        path = self.exports_dir / article_filename(item, datetime.now(timezone.utc))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(markdown, encoding="utf-8")
        except OSError as exc:
            self.notify(f"Export failed: {exc}", error=True)
            return
        self.notify(f"Saved article to {path}")

    # -- refresh and fetch results ----------------------------------------

    def refresh(self, force: bool) -> int:
        requested = 0
        for feed in self.feeds:
            if not force and self.cache.is_fresh(feed.url):
                continue
            if self.fetcher.request(feed.url):
                requested += 1
        if requested:
            self.notify(f"Refreshing {requested} feed{'s' if requested != 1 else ''}...")
        return requested

    def manual_refresh(self) -> None:
        if not self.feeds:
            self.notify("No feeds to refresh. Press m to add one.")
            return
        if not self.refresh(force=True):
            self.notify("Refresh already in progress")
        self.last_refresh = self.clock()

    def feed_by_url(self, feed_url: str) -> FeedInfo | None:
        for feed in self.feeds:
            if feed.url == feed_url:
                return feed
        return None

    def apply_fetch_result(self, result: FetchResult) -> None:
        feed = self.feed_by_url(result.feed_url)
        if feed is None:
            logger.debug("Ignoring result for unsubscribed feed %s", result.feed_url)
            return
        health = self.health.setdefault(feed.url, FeedHealth())
        if isinstance(result, FetchErr):
            health.record_failure(result.message)
            if feed.url in self.pending_new:
                self.pending_new.discard(feed.url)
                self._remove_feed(feed)
                self.notify(f"Failed to add feed: {result.message}", error=True)
                return
            self.notify(self._describe_error(feed, result), error=True)
            return
        self._apply_ok(feed, health, result)

    def _apply_ok(self, feed: FeedInfo, health: FeedHealth, result: FetchOk) -> None:
        keep_id = self.selected_item_id()
        items = [item.copy() for item in result.items]
        self._apply_saved_flags(items)
        self._announce_new_items(feed, items)
        self.cache.put(
            feed.url,
            CachedFeed(feed_url=feed.url, items=items, fetched_at=self.clock(), feed_title=result.feed_title),
        )
        if result.feed_title:
            feed.title = result.feed_title
        health.record_success(result.elapsed_ms, self.clock())
        if self.mode in LIST_MODES or self.return_mode in LIST_MODES:
            self.refresh_visible(keep_id=keep_id)
        if feed.url in self.pending_new:
            self.pending_new.discard(feed.url)
            self.notify(f"Added feed: {feed.title}")
            self.save()

    def _announce_new_items(self, feed: FeedInfo, items: list[FeedItem]) -> None:
        new_items = [item for item in items if item.id not in self.seen_ids]
        self.seen_ids.update(item.id for item in items)
        # a feed seen for the first time has nothing "new" in it yet
        if not new_items or not self.config.notifications_enabled or self.cache.get(feed.url) is None:
            return
        self.notifier(*summarize_new_items(new_items))

    @staticmethod
    def _describe_error(feed: FeedInfo, result: FetchErr) -> str:
        if result.kind == FetchErrorKind.TIMEOUT:
            return f"Timed out fetching {feed.title}"
        if result.kind == FetchErrorKind.PARSE:
            return f"Could not parse {feed.title}: {result.message}"
        return f"Network error for {feed.title}: {result.message}"

    # -- feed management --------------------------------------------------

    def start_prompt(self, prompt: ManagerPrompt, initial: str = "") -> None:
        if self.mode != ViewMode.FEED_MANAGER:
            return
        self.prompt = prompt
        self.input_buffer = initial

    def add_feed(self, raw_url: str) -> bool:
        url = raw_url.strip()
        if not is_valid_feed_url(url):
            self.notify("Invalid URL: must start with http:// or https://", error=True)
            return False
        if self.feed_by_url(url) is not None:
            self.notify("Feed already subscribed", error=True)
            return False
        self.feeds.append(FeedInfo(url=url, title=url))
        self.pending_new.add(url)
        self.fetcher.request(url)
        self.manager_selected = self.manager_feeds().index(self.feeds[-1])
        self.notify(f"Checking {url}...")
        return True

    def _remove_feed(self, feed: FeedInfo) -> None:
        self.feeds = [existing for existing in self.feeds if existing.url != feed.url]
        self.cache.remove(feed.url)
        self.health.pop(feed.url, None)
        self.pending_new.discard(feed.url)
        if self.feed_filter == feed.url:
            self.feed_filter = None
        self.manager_selected = clamp_selection(self.manager_selected, len(self.feeds))
        self.refresh_visible(keep_id=self.selected_item_id())

    def delete_selected_feed(self) -> None:
        feed = self.selected_feed()
        if feed is None:
            return
        self._remove_feed(feed)
        self.save()
        self.notify(f"Deleted feed: {feed.title}")

    def set_category(self, raw: str) -> None:
        feed = self.selected_feed()
        if feed is None:
            return
        feed.category = raw.strip() or None
        self.manager_selected = self.manager_feeds().index(feed)
        self.save()
        self.notify(f"Category set to {feed.category}" if feed.category else "Category cleared")

    def _subscribe_imported(self, report: ImportReport, fetch: bool = True) -> None:
        for feed in report.added:
            self.feeds.append(feed)
            if fetch:
                self.fetcher.request(feed.url)
        if report.added:
            self.manager_selected = clamp_selection(self.manager_selected, len(self.feeds))
            self.save()

    def export_clipboard(self) -> None:
        if not self.feeds:
            self.notify("No feeds to export", error=True)
            return
        self.clipboard(feeds_to_url_list(self.feeds))
        self.notify(f"Copied {len(self.feeds)} feed URLs to clipboard")

    def import_url_list(self, text: str) -> ImportReport:
        report = parse_url_list(text, {feed.url for feed in self.feeds})
        self._subscribe_imported(report)
        self.notify(
            f"Import: {len(report.added)} added, {report.duplicates} duplicate, {report.invalid} invalid",
            error=bool(report.invalid and not report.added),
        )
        return report

    def export_opml(self) -> None:
        if self.opml_path is None:
            self.notify("No OPML path configured", error=True)
            return
        try:
            self.opml_path.parent.mkdir(parents=True, exist_ok=True)
            self.opml_path.write_text(feeds_to_opml(self.feeds), encoding="utf-8")
        except OSError as exc:
            self.notify(f"OPML export failed: {exc}", error=True)
            return
        self.notify(f"Exported {len(self.feeds)} feeds to {self.opml_path}")

    def import_opml(self, fetch: bool = True) -> ImportReport | None:
        if self.opml_path is None or not self.opml_path.exists():
            self.notify(f"OPML file not found: {self.opml_path}", error=True)
            return None
        try:
            text = self.opml_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self.notify(f"OPML import failed: {exc}", error=True)
            return None
        try:
            report = opml_to_feeds(text, {feed.url for feed in self.feeds})
        except ValueError as exc:
            self.notify(f"OPML import failed: {exc}", error=True)
            return None
        if not report.added and not report.duplicates:
            self.notify("No feeds found", error=True)
            return report
        self._subscribe_imported(report, fetch=fetch)
        self.notify(f"OPML Import: {len(report.added)} added, {report.duplicates} duplicate")
        return report

    def reload_config(self) -> None:
        if self.config_path is None:
            return
        self.config = load_config(self.config_path)
        self.keymap = KeyMap(self.config.keybindings)
        self.cache.ttl_seconds = self.config.cache_ttl_seconds
        self.fetcher.timeout_seconds = self.config.http_timeout_secs
        self.notify("Configuration reloaded")

    # -- commands ---------------------------------------------------------

    def execute_command(self, raw: str) -> None:
        command = raw.strip().lower()
        if self.mode == ViewMode.COMMAND:
            self.return_to_prior()
        if not command:
            return
        if command in {"q", "quit"}:
            self.quit(save=True)
        elif command == "q!":
            self.quit(save=False)
        elif command in {"w", "write", "save"}:
            if self.save():
                self.notify("State saved")
        elif command in {"wq", "x"}:
            self.quit(save=True)
        elif command in {"refresh", "r"}:
            self.manual_refresh()
        elif command in {"help", "h"}:
            self.enter_mode(ViewMode.HELP)
        elif command in {"feeds", "manage"}:
            self.enter_mode(ViewMode.FEED_MANAGER)
        elif command in {"favorites", "fav"}:
            self.enter_mode(ViewMode.FAVORITES)
        elif command in {"read", "markread"}:
            if self.mode in LIST_MODES:
                self.mark_all_read()
        elif command == "unread":
            if self.mode in LIST_MODES:
                self.toggle_unread_only()
        elif command == "all":
            self.clear_filters()
            self.enter_mode(ViewMode.FEED_LIST)
        elif command in {"0", "top", "gg"}:
            self.select_first()
        elif command in {"$", "bottom"}:
            self.select_last()
        elif command == "reload":
            self.reload_config()
        else:
            self.notify(f"Unknown command: {raw.strip()}", error=True)

    # -- key handling -----------------------------------------------------

    def handle_key(self, key: str) -> None:
        if key == keys.QUIT:
            self.quit(save=True)
            return
        if self.mode in LIST_MODES:
            self._handle_list_key(key)
        elif self.mode == ViewMode.FEED_MANAGER:
            if self.prompt is not None:
                self._handle_prompt_key(key)
            else:
                self._handle_manager_key(key)
        elif self.mode == ViewMode.SEARCH:
            self._handle_search_key(key)
        elif self.mode == ViewMode.COMMAND:
            self._handle_command_key(key)
        elif self.mode == ViewMode.PREVIEW:
            self._handle_preview_key(key)
        elif self.mode == ViewMode.HELP:
            if key in {keys.ESC, "q"} or self.keymap.matches(key, "help"):
                self.return_to_prior()
        elif self.mode == ViewMode.IMPORT_EXPORT:
            self._handle_import_key(key)

    def _handle_navigation(self, key: str) -> bool:
        km = self.keymap
        if km.matches(key, "move_down"):
            self.select_next()
        elif km.matches(key, "move_up"):
            self.select_previous()
        elif km.matches(key, "page_down"):
            self.move_selection(self.page_size)
        elif km.matches(key, "page_up"):
            self.move_selection(-self.page_size)
        elif km.matches(key, "scroll_to_top") or key == keys.HOME:
            self.select_first()
        elif km.matches(key, "scroll_to_bottom") or key == keys.END:
            self.select_last()
        else:
            return False
        return True

    def _handle_list_key(self, key: str) -> None:
        km = self.keymap
        if self._handle_navigation(key):
            return
        if key == keys.ESC:
            if not self.clear_filters() and self.mode == ViewMode.FAVORITES:
                self.enter_mode(ViewMode.FEED_LIST)
        elif km.matches(key, "quit"):
            self.quit(save=True)
        elif km.matches(key, "select") or km.matches(key, "open_preview"):
            self.open_preview()
        elif km.matches(key, "open_in_browser"):
            self.open_selected_link()
        elif km.matches(key, "copy_link"):
            self.copy_link()
        elif km.matches(key, "toggle_read"):
            self.toggle_read()
        elif km.matches(key, "mark_all_read"):
            self.mark_all_read()
        elif km.matches(key, "toggle_favorite"):
            self.toggle_favorite()
        elif km.matches(key, "toggle_favorites_view"):
            target = ViewMode.FEED_LIST if self.mode == ViewMode.FAVORITES else ViewMode.FAVORITES
            self.enter_mode(target)
        elif km.matches(key, "refresh"):
            self.manual_refresh()
        elif km.matches(key, "start_search"):
            self.search_query = ""
            self.enter_mode(ViewMode.SEARCH)
            self.refresh_visible(reset=True)
        elif km.matches(key, "toggle_unread_only"):
            self.toggle_unread_only()
        elif km.matches(key, "open_feed_manager"):
            self.enter_mode(ViewMode.FEED_MANAGER)
        elif km.matches(key, "command"):
            self.input_buffer = ""
            self.enter_mode(ViewMode.COMMAND)
        elif km.matches(key, "help"):
            self.enter_mode(ViewMode.HELP)
        elif km.matches(key, "export_article"):
            self.export_article(to_file=False)
        elif km.matches(key, "save_article"):
            self.export_article(to_file=True)

    def _handle_manager_key(self, key: str) -> None:
        km = self.keymap
        if self._handle_navigation(key):
            return
        if key == keys.ESC or km.matches(key, "open_feed_manager"):
            self.enter_mode(ViewMode.FEED_LIST)
        elif km.matches(key, "quit"):
            self.quit(save=True)
        elif km.matches(key, "select"):
            feed = self.selected_feed()
            if feed is not None:
                self.feed_filter = feed.url
                self.search_query = ""
                self.enter_mode(ViewMode.FEED_LIST)
        elif km.matches(key, "add_feed"):
            self.start_prompt(ManagerPrompt.ADD_FEED)
        elif km.matches(key, "delete_feed"):
            if self.selected_feed() is not None:
                self.start_prompt(ManagerPrompt.CONFIRM_DELETE)
        elif km.matches(key, "set_category"):
            feed = self.selected_feed()
            if feed is not None:
                self.start_prompt(ManagerPrompt.SET_CATEGORY, feed.category or "")
        elif km.matches(key, "export_clipboard"):
            self.export_clipboard()
        elif km.matches(key, "import_clipboard"):
            self.input_buffer = ""
            self.enter_mode(ViewMode.IMPORT_EXPORT)
        elif km.matches(key, "export_opml"):
            self.export_opml()
        elif km.matches(key, "import_opml"):
            self.import_opml()
        elif km.matches(key, "refresh"):
            self.manual_refresh()
        elif km.matches(key, "toggle_favorites_view"):
            self.enter_mode(ViewMode.FAVORITES)
        elif km.matches(key, "command"):
            self.input_buffer = ""
            self.enter_mode(ViewMode.COMMAND)
        elif km.matches(key, "help"):
            self.enter_mode(ViewMode.HELP)

    def _edit_buffer(self, key: str) -> bool:
        if key == keys.BACKSPACE:
            self.input_buffer = self.input_buffer[:-1]
        elif is_printable(key):
            self.input_buffer += key
        else:
            return False
        return True

    def _handle_prompt_key(self, key: str) -> None:
        prompt = self.prompt
        if prompt == ManagerPrompt.CONFIRM_DELETE:
            self.prompt = None
            if key in {"y", "Y"}:
                self.delete_selected_feed()
            return
        if key == keys.ESC:
            self.prompt = None
            self.input_buffer = ""
        elif key == keys.ENTER:
            value = self.input_buffer
            self.prompt = None
            self.input_buffer = ""
            if prompt == ManagerPrompt.ADD_FEED:
                self.add_feed(value)
            elif prompt == ManagerPrompt.SET_CATEGORY:
                self.set_category(value)
        else:
            self._edit_buffer(key)

    def _handle_search_key(self, key: str) -> None:
        if key == keys.ESC:
            self.search_query = ""
            self.return_to_prior()
            self.refresh_visible(reset=True)
        elif key == keys.ENTER:
            self.return_to_prior()
        elif key == keys.BACKSPACE:
            self.search_query = self.search_query[:-1]
            self.refresh_visible(reset=True)
        elif is_printable(key):
            self.search_query += key
            self.refresh_visible(reset=True)

    def _handle_command_key(self, key: str) -> None:
        if key == keys.ESC or (key == keys.BACKSPACE and not self.input_buffer):
            self.input_buffer = ""
            self.return_to_prior()
        elif key == keys.ENTER:
            command = self.input_buffer
            self.input_buffer = ""
            self.execute_command(command)
        else:
            self._edit_buffer(key)

    def _handle_preview_key(self, key: str) -> None:
        km = self.keymap
        if key in {keys.ESC, "q"} or km.matches(key, "open_preview"):
            self.close_preview()
        elif km.matches(key, "move_down"):
            self.scroll_preview(1)
        elif km.matches(key, "move_up"):
            self.scroll_preview(-1)
        elif km.matches(key, "page_down"):
            self.scroll_preview(self.page_size)
        elif km.matches(key, "page_up"):
            self.scroll_preview(-self.page_size)
        elif km.matches(key, "scroll_to_top"):
            self.preview_scroll = 0
        elif km.matches(key, "toggle_read"):
            self.toggle_read()
        elif km.matches(key, "toggle_favorite"):
            self.toggle_favorite()
        elif km.matches(key, "open_in_browser"):
            self.open_selected_link()
        elif km.matches(key, "copy_link"):
            self.copy_link()
        elif km.matches(key, "export_article"):
            self.export_article(to_file=False)
        elif km.matches(key, "save_article"):
            self.export_article(to_file=True)

    def _handle_import_key(self, key: str) -> None:
        if key == keys.ESC:
            self.input_buffer = ""
            self.enter_mode(ViewMode.FEED_MANAGER)
        elif key == keys.CTRL_D:
            text = self.input_buffer
            self.input_buffer = ""
            self.enter_mode(ViewMode.FEED_MANAGER)
            self.import_url_list(text)
        elif key == keys.ENTER:
            self.input_buffer += "\n"
        else:
            self._edit_buffer(key)

    # -- view model -------------------------------------------------------

    def help_entries(self) -> tuple[HelpEntry, ...]:
        entries: list[HelpEntry] = []
        for section, actions in HELP_SECTIONS:
            for action, description in actions:
                entries.append(HelpEntry(section=section, keys=self.keymap.describe(action), description=description))
        return tuple(entries)

    def list_title(self) -> str:
        if self.list_mode() == ViewMode.FAVORITES:
            title = "Favorites"
        elif self.feed_filter:
            feed = self.feed_by_url(self.feed_filter)
            title = feed.title if feed else "Feed"
        else:
            title = "All feeds"
        if self.unread_only:
            title += " (unread)"
        return title

    def feed_rows(self) -> tuple[FeedRow, ...]:
        rows: list[FeedRow] = []
        for feed in self.manager_feeds():
            health = self.health.get(feed.url, FeedHealth())
            hit = self.cache.get(feed.url)
            items = hit[0].items if hit else []
            rows.append(
                FeedRow(
                    title=feed.title,
                    url=feed.url,
                    category=feed.category,
                    indicator=health.indicator,
                    health=health.describe(),
                    unread=sum(1 for item in items if not item.read),
                    total=len(items),
                    pending=self.fetcher.in_flight(feed.url),
                )
            )
        return tuple(rows)

    def view_model(self) -> ViewModel:
        preview = None
        if self.mode == ViewMode.PREVIEW and self.preview is not None:
            item = self.preview
            preview = PreviewView(
                title=item.title,
                feed_title=item.feed_title,
                link=item.link,
                published_at=item.published_at,
                read=item.read,
                favorite=item.favorite,
                body=item.description,
                scroll=self.preview_scroll,
            )
        prompt = PROMPT_LABELS[self.prompt] if self.prompt is not None else None
        return ViewModel(
            mode=self.mode,
            base_mode=self.list_mode(),
            list_title=self.list_title(),
            rows=tuple(
                ItemRow(
                    title=item.title,
                    feed_title=item.feed_title,
                    published_at=item.published_at,
                    read=item.read,
                    favorite=item.favorite,
                )
                for item in self.visible
            ),
            selected=self.selected,
            feeds=self.feed_rows(),
            manager_selected=self.manager_selected,
            search_query=self.search_query,
            unread_only=self.unread_only,
            input_buffer=self.input_buffer,
            prompt=prompt,
            preview=preview,
            status=self.status.text if self.status else "",
            status_is_error=bool(self.status and self.status.error),
            refreshing=self.fetcher.in_flight_count(),
            seconds_to_refresh=self.seconds_until_refresh(),
            theme=self.config.theme,
            help=self.help_entries() if self.mode == ViewMode.HELP else (),
        )
