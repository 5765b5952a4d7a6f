from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live

from termfeed import __version__, paths
from termfeed.cache import FeedCache
from termfeed.clipboard import copy_to_clipboard
from termfeed.config import THEME_PRESETS, load_config
from termfeed.core import AppCore
from termfeed.events import TICK_SECONDS, EventDispatcher, input_worker, tick_worker
from termfeed.fetcher import FetchOrchestrator
from termfeed.store import PersistentStore
from termfeed.ui import build_screen, list_rows_for_height

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class Options:
    config_path: Path
    state_path: Path
    refresh_minutes: int | None
    theme: str | None
    export_opml: Path | None
    import_opml: Path | None


def configure_logging() -> Path | None:
    level_name = os.getenv("TERMFEED_LOG_LEVEL", "").strip().upper()
    if not level_name and os.getenv("TERMFEED_ENV", "").strip().upper() == "DEBUG":
        level_name = "DEBUG"
    if not level_name:
        logging.getLogger().addHandler(logging.NullHandler())
        return None
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.DEBUG
    log_file = paths.log_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return log_file


def parse_args(argv: list[str]) -> Options:
    parser = argparse.ArgumentParser(
        prog="termfeed",
        description="Keyboard-driven RSS/Atom reader for the terminal.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    parser.add_argument("--state", type=Path, default=None, help="Path to the saved feeds file")
    parser.add_argument(
        "--refresh-minutes",
        type=int,
        default=None,
        help="Auto-refresh interval in minutes (0 disables), overrides the config file.",
    )
    parser.add_argument("--theme", choices=sorted(THEME_PRESETS), default=None)
    parser.add_argument("--export-opml", type=Path, default=None, metavar="PATH")
    parser.add_argument("--import-opml", type=Path, default=None, metavar="PATH")

    args = parser.parse_args(argv)

    if args.refresh_minutes is not None and args.refresh_minutes < 0:
        raise ValueError("--refresh-minutes must be >= 0")
    if args.export_opml and args.import_opml:
        raise ValueError("--export-opml and --import-opml cannot be combined")

    return Options(
        config_path=args.config or paths.config_path(),
        state_path=args.state or paths.state_path(),
        refresh_minutes=args.refresh_minutes,
        theme=args.theme,
        export_opml=args.export_opml,
        import_opml=args.import_opml,
    )


def build_core(options: Options, console: Console, dispatcher: EventDispatcher) -> AppCore:
    config = load_config(options.config_path)
    if options.refresh_minutes is not None:
        config.auto_refresh_mins = options.refresh_minutes
    if options.theme:
        config.theme = THEME_PRESETS[options.theme]()
    return AppCore(
        config=config,
        store=PersistentStore(options.state_path),
        cache=FeedCache(config.cache_ttl_seconds, directory=paths.feed_cache_dir()),
        fetcher=FetchOrchestrator(dispatcher, config.http_timeout_secs),
        config_path=options.config_path,
        opml_path=options.export_opml or options.import_opml or paths.opml_path(),
        exports_dir=paths.exports_dir(),
        clipboard=lambda text: copy_to_clipboard(text, console.file),
    )


def run_one_shot(core: AppCore, options: Options, console: Console) -> int:
    core.restore(core.store.load())
    if core.store.warning:
        console.print(f"[yellow]{core.store.warning}[/yellow]")
    if options.export_opml:
        core.export_opml()
    else:
        core.import_opml(fetch=False)
    status = core.status
    if status is None:
        return 0
    if status.error:
        console.print(f"[red]{status.text}[/red]")
        return 1
    console.print(status.text)
    return 0


def run(options: Options, console: Console) -> int:
    dispatcher = EventDispatcher()
    core = build_core(options, console, dispatcher)
    if options.export_opml or options.import_opml:
        return run_one_shot(core, options, console)

    core.startup()
    stop_event = threading.Event()
    workers = [
        threading.Thread(target=input_worker, args=(dispatcher, stop_event), daemon=True),
        threading.Thread(target=tick_worker, args=(dispatcher, stop_event), daemon=True),
    ]
    for worker in workers:
        worker.start()

    core.set_page_size(list_rows_for_height(console.size.height))
    with Live(
        build_screen(core.view_model(), console.size.width, console.size.height),
        console=console,
        refresh_per_second=4,
        screen=True,
        vertical_overflow="crop",
    ) as live:
        try:
            while core.running:
                event = dispatcher.next_event(timeout=TICK_SECONDS)
                if event is None:
                    continue
                core.handle_event(event)
                for pending in dispatcher.drain():
                    if not core.running:
                        break
                    core.handle_event(pending)
                core.set_page_size(list_rows_for_height(console.size.height))
                live.update(build_screen(core.view_model(), console.size.width, console.size.height))
        except KeyboardInterrupt:
            core.quit(save=True)
        finally:
            stop_event.set()
            for worker in workers:
                worker.join(timeout=2)
    if core.fetcher.in_flight():
        logger.debug("Abandoning %d in-flight fetches on exit", core.fetcher.in_flight_count())
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    log_file = configure_logging()
    console = Console()
    try:
        options = parse_args(argv if argv is not None else sys.argv[1:])
    except ValueError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        return 2
    if log_file:
        logger.info("termfeed %s starting, logging to %s", __version__, log_file)

    try:
        return run(options, console)
    except KeyboardInterrupt:
        console.print("\n[bold]Stopped.[/bold]")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
