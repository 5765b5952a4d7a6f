import json

import pytest
from conftest import FEED_A, FEED_B, make_core, make_item, populate

from termfeed import keys
from termfeed.config import Config
from termfeed.core import IllegalTransition, apply_filters, clamp_selection, cycle_selection
from termfeed.errors import FetchErrorKind
from termfeed.models import FeedInfo, FetchErr, FetchOk
from termfeed.store import CORRUPT_STATE_MESSAGE
from termfeed.view import ManagerPrompt, ViewMode


def press(core, *sequence):
    for key in sequence:
        core.handle_key(key)


def type_text(core, text):
    for char in text:
        core.handle_key(char)


def visible_ids(core):
    return [item.id for item in core.visible]


def test_selection_helpers_on_empty_lists():
    assert clamp_selection(3, 0) is None
    assert cycle_selection(0, 0, 1) is None
    assert cycle_selection(None, 0, -1) is None
    assert cycle_selection(2, 3, 1) == 0
    assert cycle_selection(0, 3, -1) == 2


def test_moving_on_empty_list_is_a_no_op(core):
    assert core.visible == []
    assert core.selected is None
    press(core, "j", "k", keys.PGDN, keys.PGUP, "g", "G", "f", "r", "p")
    assert core.selected is None
    assert core.mode == ViewMode.FEED_LIST


def test_select_next_cycles_through_visible_list(core):
    populate(core, {FEED_A: [make_item("a", day=1), make_item("b", day=2), make_item("c", day=3)]})
    assert visible_ids(core) == ["c", "b", "a"]
    assert core.selected == 0
    for _ in range(3):
        core.select_next()
    assert core.selected == 0
    core.select_previous()
    assert core.selected == 2


def test_page_and_edge_navigation_clamps(core):
    populate(core, {FEED_A: [make_item(str(day), day=day) for day in range(1, 26)]})
    core.set_page_size(10)
    press(core, keys.PGDN, keys.PGDN, keys.PGDN)
    assert core.selected == 24
    press(core, "g")
    assert core.selected == 0
    press(core, "G")
    assert core.selected == 24


def test_unfavorite_in_favorites_view_removes_item_immediately(core):
    populate(
        core,
        {
            FEED_A: [
                make_item("a", day=1, favorite=True),
                make_item("b", day=2, favorite=True),
                make_item("c", day=3, favorite=True),
                make_item("d", day=4),
            ]
        },
    )
    press(core, "F")
    assert core.mode == ViewMode.FAVORITES
    assert visible_ids(core) == ["c", "b", "a"]

    press(core, "j", "f")
    assert visible_ids(core) == ["c", "a"]
    assert core.selected == 0
    assert "b" not in core.favorite_ids

    press(core, "f", "f")
    assert core.visible == []
    assert core.selected is None


def test_favorite_toggle_in_feed_list_keeps_item_visible(core):
    populate(core, {FEED_A: [make_item("a", day=1), make_item("b", day=2)]})
    press(core, "j", "f")
    assert visible_ids(core) == ["b", "a"]
    assert core.selected == 1
    assert core.visible[1].favorite
    assert core.favorite_ids == {"a"}


def test_search_filters_case_insensitively_without_reordering(core):
    items = [
        make_item("a", title="Rust 1.80 released", day=1),
        make_item("b", title="Python news", description="A RUST binding for CPython", day=2),
        make_item("c", title="Go generics", day=3),
        make_item("d", title="rusty tools", day=4),
    ]
    populate(core, {FEED_A: items})
    base = list(core.visible)

    press(core, "/")
    assert core.mode == ViewMode.SEARCH
    type_text(core, "rUsT")
    assert visible_ids(core) == ["d", "b", "a"]
    for item in core.visible:
        assert item in base
        assert "rust" in item.title.lower() or "rust" in item.description.lower()
    assert [base.index(item) for item in core.visible] == sorted(base.index(item) for item in core.visible)

    press(core, keys.ENTER)
    assert core.mode == ViewMode.FEED_LIST
    assert core.search_query == "rUsT"
    assert visible_ids(core) == ["d", "b", "a"]


def test_search_escape_clears_filter(core):
    populate(core, {FEED_A: [make_item("a", title="alpha", day=1), make_item("b", title="beta", day=2)]})
    press(core, "/")
    type_text(core, "alp")
    assert visible_ids(core) == ["a"]
    press(core, keys.BACKSPACE, keys.BACKSPACE, keys.BACKSPACE, "z")
    assert core.visible == []
    assert core.selected is None
    press(core, keys.ESC)
    assert core.mode == ViewMode.FEED_LIST
    assert core.search_query == ""
    assert visible_ids(core) == ["b", "a"]


def test_starting_search_clears_previous_query(core):
    populate(core, {FEED_A: [make_item("a", title="alpha")]})
    core.search_query = "zzz"
    press(core, "/")
    assert core.search_query == ""
    assert visible_ids(core) == ["a"]


def test_apply_filters_combines_unread_and_query():
    items = [make_item("a", title="news", read=True), make_item("b", title="news"), make_item("c", title="misc")]
    assert [item.id for item in apply_filters(items, "NEWS", unread_only=True)] == ["b"]
    assert [item.id for item in apply_filters(items, "", unread_only=False)] == ["a", "b", "c"]


def test_preview_snapshots_selected_item_and_returns(core):
    populate(core, {FEED_A: [make_item("a", day=1, description="line one\nline two"), make_item("b", day=2)]})
    press(core, "j", "p")
    assert core.mode == ViewMode.PREVIEW
    assert core.preview.id == "a"
    assert core.preview is not core.visible[1]
    assert core.visible[1].read

    press(core, "j")
    assert core.preview_scroll == 1
    press(core, "j")
    assert core.preview_scroll == 1

    press(core, "f")
    assert core.preview.favorite
    assert "a" in core.favorite_ids

    press(core, "q")
    assert core.mode == ViewMode.FEED_LIST
    assert core.preview is None
    assert core.selected == 1


def test_preview_returns_to_favorites(core):
    populate(core, {FEED_A: [make_item("a", favorite=True)]})
    press(core, "F", keys.ENTER)
    assert core.mode == ViewMode.PREVIEW
    press(core, keys.ESC)
    assert core.mode == ViewMode.FAVORITES


def test_unfavorite_from_preview_drops_item_from_favorites(core):
    populate(core, {FEED_A: [make_item("a", day=1, favorite=True), make_item("b", day=2, favorite=True)]})
    press(core, "F", "p", "f", "p")
    assert core.mode == ViewMode.FAVORITES
    assert visible_ids(core) == ["a"]
    assert core.selected == 0


def test_command_write_saves_and_returns_to_prior_mode(core, tmp_path):
    populate(core, {FEED_A: [make_item("a", read=True)]})
    press(core, ":")
    assert core.mode == ViewMode.COMMAND
    type_text(core, "w")
    press(core, keys.ENTER)
    assert core.mode == ViewMode.FEED_LIST
    assert core.status.text == "State saved"
    saved = json.loads((tmp_path / "feeds.json").read_text())
    assert saved["read_items"] == ["a"]
    assert core.running


def test_command_quit_variants(core, tmp_path):
    press(core, ":", "q", "!", keys.ENTER)
    assert not core.running
    assert not (tmp_path / "feeds.json").exists()

    core.running = True
    press(core, ":", "w", "q", keys.ENTER)
    assert not core.running
    assert (tmp_path / "feeds.json").exists()


def test_unknown_and_empty_commands(core):
    press(core, ":", keys.ENTER)
    assert core.mode == ViewMode.FEED_LIST
    assert core.status is None
    press(core, ":")
    type_text(core, "bogus")
    press(core, keys.ENTER)
    assert core.status.text == "Unknown command: bogus"
    assert core.status.error


def test_commands_ignore_case(core):
    press(core, ":", "W", keys.ENTER)
    assert core.status.text == "State saved"
    press(core, ":")
    type_text(core, "Bogus")
    press(core, keys.ENTER)
    assert core.status.text == "Unknown command: Bogus"
    press(core, ":", "Q", keys.ENTER)
    assert not core.running


def test_command_escape_and_backspace_cancel(core):
    press(core, "F", ":", "x", keys.ESC)
    assert core.mode == ViewMode.FAVORITES
    press(core, ":", keys.BACKSPACE)
    assert core.mode == ViewMode.FAVORITES


def test_commands_switch_views(core):
    press(core, ":")
    type_text(core, "help")
    press(core, keys.ENTER)
    assert core.mode == ViewMode.HELP
    assert core.view_model().help
    press(core, keys.ESC)
    assert core.mode == ViewMode.FEED_LIST

    press(core, ":")
    type_text(core, "fav")
    press(core, keys.ENTER)
    assert core.mode == ViewMode.FAVORITES

    press(core, ":")
    type_text(core, "feeds")
    press(core, keys.ENTER)
    assert core.mode == ViewMode.FEED_MANAGER


def test_command_navigation_and_mark_read(core):
    populate(core, {FEED_A: [make_item("a", day=1), make_item("b", day=2), make_item("c", day=3)]})
    press(core, ":", "$", keys.ENTER)
    assert core.selected == 2
    press(core, ":", "g", "g", keys.ENTER)
    assert core.selected == 0
    press(core, ":")
    type_text(core, "read")
    press(core, keys.ENTER)
    assert all(item.read for item in core.visible)
    assert core.read_ids == {"a", "b", "c"}


def test_illegal_transition_is_rejected(core):
    populate(core, {FEED_A: [make_item("a")]})
    press(core, "p")
    with pytest.raises(IllegalTransition):
        core.enter_mode(ViewMode.FEED_MANAGER)


def test_auto_refresh_requests_feeds_and_resets_countdown(core, clock, fetcher):
    populate(core, {FEED_A: [make_item("a")]})
    core.config.auto_refresh_mins = 5
    clock.advance(3601)
    core.on_tick(clock())
    assert fetcher.requests == [FEED_A]
    assert core.last_refresh == clock()
    assert core.seconds_until_refresh() == 300

    fetcher.complete(FEED_A)
    clock.advance(10)
    core.on_tick(clock())
    assert fetcher.requests == [FEED_A]


def test_auto_refresh_ignores_cache_age_but_skips_in_flight_feeds(core, clock, fetcher):
    populate(core, {FEED_A: [make_item("a")], FEED_B: [make_item("b", feed_url=FEED_B)]})
    core.config.auto_refresh_mins = 1
    fetcher.request(FEED_B)
    clock.advance(61)
    core.on_tick(clock())
    assert fetcher.requests == [FEED_B, FEED_A]
    assert core.status.text == "Refreshing 1 feed..."
    assert core.last_refresh == clock()


def test_auto_refresh_waits_while_typing(core, clock, fetcher):
    populate(core, {FEED_A: [make_item("a")]})
    core.config.auto_refresh_mins = 5
    clock.advance(3601)
    press(core, "/")
    core.on_tick(clock())
    assert fetcher.requests == []

    press(core, keys.ESC, "m", "a")
    assert core.prompt == ManagerPrompt.ADD_FEED
    core.on_tick(clock())
    assert fetcher.requests == []

    press(core, keys.ESC)
    core.on_tick(clock())
    assert fetcher.requests == [FEED_A]


def test_auto_refresh_disabled_at_zero(core, clock, fetcher):
    populate(core, {FEED_A: [make_item("a")]})
    clock.advance(10**6)
    core.on_tick(clock())
    assert fetcher.requests == []
    assert core.seconds_until_refresh() is None


def test_manual_refresh_forces_fetch_and_resets_countdown(core, clock, fetcher):
    populate(core, {FEED_A: [make_item("a")], FEED_B: [make_item("b", feed_url=FEED_B)]})
    core.config.auto_refresh_mins = 5
    clock.advance(200)
    press(core, "c")
    assert fetcher.requests == [FEED_A, FEED_B]
    assert core.seconds_until_refresh() == 300
    assert core.status.text == "Refreshing 2 feeds..."


def test_timeout_keeps_cached_items_and_reports_that_feed(core):
    populate(core, {FEED_A: [make_item("a", day=1)], FEED_B: [make_item("b", feed_url=FEED_B, day=2)]})
    before = visible_ids(core)
    core.apply_fetch_result(FetchErr(FEED_A, FetchErrorKind.TIMEOUT, "Timed out after 30s"))
    assert visible_ids(core) == before
    assert core.cache.get(FEED_A)[0].items[0].id == "a"
    assert core.status.error
    assert core.status.text == "Timed out fetching Feed A"
    assert core.health[FEED_A].describe().startswith("Error:")
    assert FEED_B not in core.health


def test_successful_fetch_merges_flags_and_keeps_selection(core):
    populate(core, {FEED_A: [make_item("a", day=1, read=True), make_item("b", day=2, favorite=True)]})
    press(core, "j")
    assert core.selected_item().id == "a"

    fresh = (make_item("new", day=3), make_item("b", day=2), make_item("a", day=1))
    core.apply_fetch_result(FetchOk(FEED_A, fresh, "Renamed Feed", elapsed_ms=120))

    assert visible_ids(core) == ["new", "b", "a"]
    assert core.selected_item().id == "a"
    by_id = {item.id: item for item in core.visible}
    assert by_id["a"].read
    assert by_id["b"].favorite
    assert not by_id["new"].read
    assert core.feed_by_url(FEED_A).title == "Renamed Feed"
    assert core.health[FEED_A].describe() == "OK (120ms)"


def test_result_for_removed_feed_is_ignored(core):
    core.apply_fetch_result(FetchOk("https://gone.example/feed", (make_item("x"),), "Gone"))
    assert core.cache.get("https://gone.example/feed") is None


def test_add_feed_is_validated_by_first_fetch(core, fetcher, tmp_path):
    press(core, "m", "a")
    type_text(core, "https://c.example/feed")
    press(core, keys.ENTER)
    assert core.prompt is None
    assert fetcher.requests == ["https://c.example/feed"]
    assert "https://c.example/feed" in core.pending_new

    core.apply_fetch_result(FetchOk("https://c.example/feed", (make_item("c1", feed_url="https://c.example/feed"),), "C"))
    assert core.feed_by_url("https://c.example/feed").title == "C"
    assert core.status.text == "Added feed: C"
    saved = json.loads((tmp_path / "feeds.json").read_text())
    assert saved["feeds"] == [{"url": "https://c.example/feed", "title": "C", "category": None}]


def test_add_feed_rolled_back_when_first_fetch_fails(core):
    press(core, "m", "a")
    type_text(core, "https://broken.example/feed")
    press(core, keys.ENTER)
    core.apply_fetch_result(FetchErr("https://broken.example/feed", FetchErrorKind.PARSE, "not a feed"))
    assert core.feed_by_url("https://broken.example/feed") is None
    assert core.status.text == "Failed to add feed: not a feed"


def test_add_feed_rejects_invalid_and_duplicate_urls(core, fetcher):
    populate(core, {FEED_A: [make_item("a")]})
    press(core, "m", "a")
    type_text(core, "example.com/feed")
    press(core, keys.ENTER)
    assert core.status.text.startswith("Invalid URL")
    press(core, "a")
    type_text(core, FEED_A)
    press(core, keys.ENTER)
    assert core.status.text == "Feed already subscribed"
    assert fetcher.requests == []
    assert len(core.feeds) == 1


def test_delete_feed_requires_confirmation(core):
    populate(core, {FEED_A: [make_item("a")], FEED_B: [make_item("b", feed_url=FEED_B)]})
    press(core, "m", "d", "n")
    assert len(core.feeds) == 2
    press(core, "d", "y")
    assert [feed.url for feed in core.feeds] == [FEED_B]
    assert core.cache.get(FEED_A) is None
    assert core.manager_selected == 0
    press(core, keys.ESC)
    assert visible_ids(core) == ["b"]


def test_set_and_clear_category(core, tmp_path):
    populate(core, {FEED_A: [make_item("a")], FEED_B: [make_item("b", feed_url=FEED_B)]})
    press(core, "m", "t")
    type_text(core, "News")
    press(core, keys.ENTER)
    assert core.feed_by_url(FEED_A).category == "News"
    assert core.categories() == ["News"]
    assert core.selected_feed().url == FEED_A

    press(core, "t")
    assert core.input_buffer == "News"
    press(core, *[keys.BACKSPACE] * 4, keys.ENTER)
    assert core.feed_by_url(FEED_A).category is None
    assert core.status.text == "Category cleared"


def test_selecting_feed_in_manager_filters_list(core):
    populate(core, {FEED_A: [make_item("a", day=1)], FEED_B: [make_item("b", feed_url=FEED_B, day=2)]})
    press(core, "m", "j", keys.ENTER)
    assert core.mode == ViewMode.FEED_LIST
    assert visible_ids(core) == ["b"]
    assert core.list_title() == "Feed B"
    press(core, keys.ESC)
    assert visible_ids(core) == ["b", "a"]
    assert core.mode == ViewMode.FEED_LIST


def test_escape_in_favorites_returns_to_feed_list(core):
    press(core, "F", keys.ESC)
    assert core.mode == ViewMode.FEED_LIST
    assert core.running


def test_clipboard_export_and_pasted_import(core, fetcher, copied):
    populate(core, {FEED_A: [make_item("a")]})
    press(core, "m", "e")
    assert copied == [FEED_A]

    press(core, "i")
    assert core.mode == ViewMode.IMPORT_EXPORT
    type_text(core, "https://c.example/feed")
    press(core, keys.ENTER)
    type_text(core, "not a url")
    press(core, keys.ENTER)
    type_text(core, FEED_A)
    press(core, keys.CTRL_D)

    assert core.mode == ViewMode.FEED_MANAGER
    assert core.status.text == "Import: 1 added, 1 duplicate, 1 invalid"
    assert fetcher.requests == ["https://c.example/feed"]
    assert core.feed_by_url("https://c.example/feed") is not None


def test_opml_export_then_import(core, tmp_path):
    populate(core, {FEED_A: [make_item("a")], FEED_B: [make_item("b", feed_url=FEED_B)]})
    core.feed_by_url(FEED_A).category = "Tech"
    press(core, "m", "E")
    assert (tmp_path / "feeds.opml").exists()

    press(core, "I")
    assert core.status.text == "OPML Import: 0 added, 2 duplicate"

    core.feeds = []
    press(core, "I")
    assert core.status.text == "OPML Import: 2 added, 0 duplicate"
    assert {feed.url: feed.category for feed in core.feeds} == {FEED_A: "Tech", FEED_B: None}


def test_opml_import_can_skip_fetching(core, tmp_path, fetcher):
    populate(core, {FEED_A: [make_item("a")]})
    core.export_opml()
    core.feeds = []
    core.import_opml(fetch=False)
    assert [feed.url for feed in core.feeds] == [FEED_A]
    assert fetcher.requests == []
    assert FEED_A in (tmp_path / "feeds.json").read_text()

    core.feeds = []
    core.import_opml()
    assert fetcher.requests == [FEED_A]


def test_opml_import_without_file_reports_error(core):
    press(core, "m", "I")
    assert core.status.error
    assert core.status.text.startswith("OPML file not found")


def test_mark_read_on_scroll(core):
    core.config.mark_read_on_scroll = True
    populate(core, {FEED_A: [make_item("a", day=1), make_item("b", day=2)]})
    press(core, "j")
    assert core.visible[1].read
    assert not core.visible[0].read


def test_unread_only_hides_read_items(core):
    populate(core, {FEED_A: [make_item("a", day=1, read=True), make_item("b", day=2)]})
    press(core, "u")
    assert visible_ids(core) == ["b"]
    press(core, "r")
    assert core.visible == []
    assert core.selected is None
    press(core, keys.ESC)
    assert not core.unread_only
    assert visible_ids(core) == ["b", "a"]


def test_article_export_to_clipboard_and_file(core, copied, tmp_path):
    populate(core, {FEED_A: [make_item("a", title="Hello World", description="Body text", favorite=True)]})
    press(core, "s")
    assert copied[0].startswith("# Hello World")
    assert "**Status:** Unread | ★ Favorited" in copied[0]

    press(core, "S")
    files = list((tmp_path / "exports").iterdir())
    assert len(files) == 1
    assert files[0].name.startswith("Hello_World_")
    assert "Body text" in files[0].read_text()


def test_copy_and_open_link(core, copied):
    opened = []
    core.opener = lambda url: opened.append(url) or ""
    populate(core, {FEED_A: [make_item("a")]})
    press(core, "O", "o")
    assert copied == [f"{FEED_A}#a"]
    assert opened == [f"{FEED_A}#a"]
    assert core.visible[0].read


@pytest.mark.parametrize("error", [False, True])
def test_status_messages_expire_on_tick(core, clock, error):
    core.notify("hello", error=error)
    core.on_tick(clock() + 4)
    assert core.status is not None
    core.on_tick(clock() + 5)
    assert core.status is None


def test_startup_migrates_legacy_state_and_fetches_missing_feeds(core, tmp_path, fetcher):
    (tmp_path / "feeds.json").write_text(json.dumps({"feeds": [FEED_A, FEED_B], "read_items": []}))
    core.startup()
    assert [(feed.title, feed.category) for feed in core.feeds] == [(FEED_A, None), (FEED_B, None)]
    assert fetcher.requests == [FEED_A, FEED_B]
    assert core.status.text == "Refreshing 2 feeds..."


def test_startup_with_corrupt_state_warns_and_continues(core, tmp_path):
    (tmp_path / "feeds.json").write_text("][")
    core.startup()
    assert core.feeds == []
    assert core.running
    assert core.mode == ViewMode.FEED_LIST
    core.status = None
    core.store.load()
    assert core.store.warning == CORRUPT_STATE_MESSAGE


def test_view_model_reflects_state(core):
    populate(core, {FEED_A: [make_item("a", day=1), make_item("b", day=2, read=True)]})
    view = core.view_model()
    assert view.mode == ViewMode.FEED_LIST
    assert [row.title for row in view.rows] == ["Item b", "Item a"]
    assert view.selected == 0
    assert view.feeds[0].unread == 1
    assert view.feeds[0].total == 2
    assert view.seconds_to_refresh is None


def test_new_articles_raise_one_summary_notification(core, notified):
    populate(core, {FEED_A: [make_item("a")]})
    core.config.notifications_enabled = True
    fresh = tuple(make_item(str(day), day=day) for day in (6, 5, 4, 3)) + (make_item("a"),)
    core.apply_fetch_result(FetchOk(FEED_A, fresh, "Feed A"))
    assert notified == [("4 new articles", "• Item 6\n• Item 5\n• Item 4\n...and 1 more")]

    core.apply_fetch_result(FetchOk(FEED_A, fresh, "Feed A"))
    assert len(notified) == 1


def test_notifications_off_by_default_and_skipped_for_first_fetch(core, notified):
    populate(core, {FEED_A: [make_item("a")]})
    core.apply_fetch_result(FetchOk(FEED_A, (make_item("b", day=2), make_item("a")), "Feed A"))
    assert notified == []
    assert "b" in core.seen_ids

    core.config.notifications_enabled = True
    core.feeds.append(FeedInfo(FEED_B, FEED_B))
    core.apply_fetch_result(FetchOk(FEED_B, (make_item("x", feed_url=FEED_B),), "Feed B"))
    assert notified == []


def test_items_cached_before_restart_are_not_announced(core, tmp_path, clock, fetcher, copied, notified):
    populate(core, {FEED_A: [make_item("a")]})
    assert core.save()

    restarted = make_core(tmp_path, clock, fetcher, copied, notified, Config(notifications_enabled=True))
    restarted.startup()
    assert fetcher.requests == []
    restarted.apply_fetch_result(FetchOk(FEED_A, (make_item("b", day=2), make_item("a")), "Feed A"))
    assert notified == [("1 new article", "• Item b")]
