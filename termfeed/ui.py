from __future__ import annotations

from datetime import datetime, timezone

from rich.console import Group
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from termfeed.config import Theme
from termfeed.exchange import format_date
from termfeed.view import FeedRow, ItemRow, ViewMode, ViewModel

CHROME_ROWS = 7


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def human_age(published_at: datetime | None) -> str:
    if published_at is None:
        return "-"
    delta = now_utc() - published_at
    seconds = max(int(delta.total_seconds()), 0)
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 48:
        return f"{hours}h"
    return f"{hours // 24}d"


def truncate(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    if width <= 1:
        return value[:width]
    return f"{value[: width - 1]}…"


def format_countdown(seconds: int | None) -> str:
    if seconds is None:
        return "auto-refresh off"
    minutes, secs = divmod(seconds, 60)
    return f"next refresh {minutes}:{secs:02d}"


def list_rows_for_height(terminal_height: int) -> int:
    return max(1, terminal_height - CHROME_ROWS)


def visible_window(selected: int | None, total: int, rows: int) -> tuple[int, int]:
    if total <= rows:
        return 0, total
    anchor = selected or 0
    start = max(0, min(anchor - rows // 2, total - rows))
    return start, start + rows


def render_item_table(rows: tuple[ItemRow, ...], selected: int | None, theme: Theme, height: int, width: int) -> Table:
    table = Table(expand=True, show_header=False, box=None, padding=(0, 1))
    table.add_column("Flags", width=3, no_wrap=True)
    table.add_column("Age", justify="right", width=4, no_wrap=True)
    table.add_column("Title", no_wrap=True, overflow="ellipsis", ratio=4)
    table.add_column("Feed", no_wrap=True, overflow="ellipsis", ratio=1, style=theme.style("muted"))

    start, end = visible_window(selected, len(rows), height)
    title_width = max(20, width - 30)
    for index in range(start, end):
        row = rows[index]
        flags = Text()
        flags.append("★" if row.favorite else " ", style=theme.style("secondary"))
        flags.append(" " if row.read else "•", style=theme.style("primary"))
        title_style = theme.style("muted") if row.read else theme.style("text")
        row_style = f"bold reverse {theme.style('highlight')}" if index == selected else ""
        table.add_row(
            flags,
            human_age(row.published_at),
            Text(truncate(row.title, title_width), style=title_style),
            row.feed_title,
            style=row_style,
        )
    if not rows:
        table.add_row("", "", Text("No items. Press c to refresh or m to manage feeds.", style=theme.style("muted")), "")
    return table


def feed_window(feeds: tuple[FeedRow, ...], selected: int | None, height: int) -> tuple[int, int]:
    """Window over ``feeds`` that still fits once a header row is added per category."""
    rows = height
    start, end = visible_window(selected, len(feeds), rows)
    while rows > 1 and (end - start) + len({feed.category for feed in feeds[start:end]}) > height:
        rows -= 1
        start, end = visible_window(selected, len(feeds), rows)
    return start, end


def render_feed_table(feeds: tuple[FeedRow, ...], selected: int | None, theme: Theme, height: int) -> Table:
    table = Table(expand=True, box=None, padding=(0, 1))
    table.add_column("", width=1, no_wrap=True)
    table.add_column("Feed", no_wrap=True, overflow="ellipsis", ratio=3)
    table.add_column("Unread", justify="right", width=8)
    table.add_column("Health", no_wrap=True, overflow="ellipsis", ratio=2, style=theme.style("description"))

    start, end = feed_window(feeds, selected, max(1, height - 1))
    last_category: str | None = ""
    for index in range(start, end):
        feed = feeds[index]
        if feed.category != last_category:
            last_category = feed.category
            table.add_row("", Text(f"▸ {feed.category or 'Uncategorized'}", style=f"bold {theme.style('category')}"), "", "")
        indicator_style = theme.style("error") if feed.health.startswith("Error") else theme.style("primary")
        health = "fetching…" if feed.pending else feed.health
        table.add_row(
            Text(feed.indicator, style=indicator_style),
            f"  {feed.title}",
            f"{feed.unread}/{feed.total}",
            health,
            style=f"bold reverse {theme.style('highlight')}" if index == selected else "",
        )
    if not feeds:
        table.add_row("", Text("No feeds yet. Press a to add one or I to import OPML.", style=theme.style("muted")), "", "")
    return table


def render_preview(view: ViewModel, height: int) -> Panel:
    preview = view.preview
    theme = view.theme
    if preview is None:
        return Panel("", title="Preview")
    status = "Read" if preview.read else "Unread"
    if preview.favorite:
        status += " | ★ Favorited"
    header = Text()
    header.append(f"{preview.title}\n", style=f"bold {theme.style('primary')}")
    header.append(f"{preview.feed_title} | {format_date(preview.published_at)} | {status}\n", style=theme.style("muted"))
    header.append(f"{preview.link}\n", style=theme.style("highlight"))
    lines = preview.body.splitlines() or ["(no description)"]
    body_rows = max(1, height - 5)
    body = Text("\n".join(lines[preview.scroll : preview.scroll + body_rows]), style=theme.style("description"))
    return Panel(
        Group(header, body),
        title="Preview",
        subtitle=f"line {preview.scroll + 1}/{len(lines)}",
        border_style=theme.style("secondary"),
    )


def render_help(view: ViewModel) -> Panel:
    theme = view.theme
    table = Table(expand=True, box=None, padding=(0, 1))
    table.add_column("Section", style=theme.style("category"), width=14)
    table.add_column("Keys", style=theme.style("secondary"), width=16)
    table.add_column("Action", style=theme.style("text"))
    last_section = ""
    for entry in view.help:
        table.add_row(entry.section if entry.section != last_section else "", entry.keys, entry.description)
        last_section = entry.section
    return Panel(table, title="Help (Esc to close)", border_style=theme.style("highlight"))


def render_header(view: ViewModel) -> Text:
    theme = view.theme
    header = Text()
    header.append(" termfeed ", style=f"bold reverse {theme.style('primary')}")
    if view.base_mode == ViewMode.FEED_MANAGER:
        header.append(f"  Feeds ({len(view.feeds)})", style=f"bold {theme.style('text')}")
    else:
        header.append(f"  {view.list_title} ({len(view.rows)})", style=f"bold {theme.style('text')}")
    if view.search_query:
        header.append(f"  /{view.search_query}", style=theme.style("secondary"))
    if view.refreshing:
        header.append(f"  refreshing {view.refreshing}…", style=theme.style("highlight"))
    header.append(f"  {format_countdown(view.seconds_to_refresh)}", style=theme.style("muted"))
    return header


def render_footer(view: ViewModel, width: int) -> Text:
    theme = view.theme
    max_chars = max(20, width - 2)
    if view.mode == ViewMode.SEARCH:
        return Text(truncate(f"/{view.search_query}█  Enter keep | Esc clear", max_chars), style=theme.style("secondary"))
    if view.mode == ViewMode.COMMAND:
        return Text(truncate(f":{view.input_buffer}█", max_chars), style=theme.style("secondary"))
    if view.prompt is not None:
        return Text(truncate(f"{view.prompt}: {view.input_buffer}█", max_chars), style=theme.style("secondary"))
    if view.status:
        style = theme.style("error") if view.status_is_error else theme.style("primary")
        return Text(truncate(view.status, max_chars), style=style)
    hint = "? help | / search | m feeds | F favorites | c refresh | : command | q quit"
    return Text(truncate(hint, max_chars), style=theme.style("muted"))


def render_import(view: ViewModel) -> Panel:
    theme = view.theme
    body = Text(view.input_buffer + "█", style=theme.style("text"))
    return Panel(
        body,
        title="Paste feed URLs, one per line",
        subtitle="Enter newline | Ctrl-D import | Esc cancel",
        border_style=theme.style("secondary"),
    )


def render_body(view: ViewModel, height: int, width: int):
    theme = view.theme
    if view.mode == ViewMode.PREVIEW:
        return render_preview(view, height)
    if view.mode == ViewMode.HELP:
        return render_help(view)
    if view.mode == ViewMode.IMPORT_EXPORT:
        return render_import(view)
    if view.base_mode == ViewMode.FEED_MANAGER:
        return Panel(
            render_feed_table(view.feeds, view.manager_selected, theme, max(1, height - 3)),
            title="Feed manager",
            subtitle="a add | d delete | t category | e/i clipboard | E/I OPML | Enter show feed",
            border_style=theme.style("secondary"),
        )
    border = theme.style("secondary") if view.base_mode == ViewMode.FAVORITES else theme.style("primary")
    return Panel(
        render_item_table(view.rows, view.selected, theme, max(1, height - 2), width),
        title=view.list_title,
        border_style=border,
    )


def build_screen(view: ViewModel, terminal_width: int, terminal_height: int) -> Layout:
    body_height = max(3, terminal_height - 2)
    root = Layout(name="root")
    root.split_column(
        Layout(render_header(view), name="header", size=1),
        Layout(render_body(view, body_height, terminal_width), name="body"),
        Layout(render_footer(view, terminal_width), name="footer", size=1),
    )
    return root
