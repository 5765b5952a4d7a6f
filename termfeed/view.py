from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from termfeed.config import Theme


class ViewMode(str, Enum):
    FEED_LIST = "feed_list"
    FEED_MANAGER = "feed_manager"
    FAVORITES = "favorites"
    PREVIEW = "preview"
    HELP = "help"
    SEARCH = "search"
    COMMAND = "command"
    IMPORT_EXPORT = "import_export"


class ManagerPrompt(str, Enum):
    ADD_FEED = "add_feed"
    SET_CATEGORY = "set_category"
    CONFIRM_DELETE = "confirm_delete"


PROMPT_LABELS = {
    ManagerPrompt.ADD_FEED: "Feed URL",
    ManagerPrompt.SET_CATEGORY: "Category (empty clears)",
    ManagerPrompt.CONFIRM_DELETE: "Delete feed? (y/n)",
}


@dataclass(frozen=True)
class ItemRow:
    title: str
    feed_title: str
    published_at: datetime | None
    read: bool
    favorite: bool


@dataclass(frozen=True)
class FeedRow:
    title: str
    url: str
    category: str | None
    indicator: str
    health: str
    unread: int
    total: int
    pending: bool


@dataclass(frozen=True)
class PreviewView:
    title: str
    feed_title: str
    link: str
    published_at: datetime | None
    read: bool
    favorite: bool
    body: str
    scroll: int


@dataclass(frozen=True)
class HelpEntry:
    section: str
    keys: str
    description: str


@dataclass(frozen=True)
class ViewModel:
    mode: ViewMode
    base_mode: ViewMode
    list_title: str
    rows: tuple[ItemRow, ...]
    selected: int | None
    feeds: tuple[FeedRow, ...]
    manager_selected: int | None
    search_query: str
    unread_only: bool
    input_buffer: str
    prompt: str | None
    preview: PreviewView | None
    status: str
    status_is_error: bool
    refreshing: int
    seconds_to_refresh: int | None
    theme: Theme
    help: tuple[HelpEntry, ...] = field(default_factory=tuple)
