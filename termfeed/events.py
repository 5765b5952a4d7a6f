from __future__ import annotations

import codecs
import logging
import os
import queue
import select
import sys
import termios
import threading
import time
import tty
from collections.abc import Callable
from dataclasses import dataclass

from termfeed import keys
from termfeed.models import FetchResult

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.25

ESCAPE_SEQUENCES = {
    "[A": keys.UP,
    "[B": keys.DOWN,
    "[C": keys.RIGHT,
    "[D": keys.LEFT,
    "[Z": keys.SHTAB,
    "[5~": keys.PGUP,
    "[6~": keys.PGDN,
    "[H": keys.HOME,
    "[F": keys.END,
    "[1~": keys.HOME,
    "[4~": keys.END,
    "[2~": keys.INSERT,
    "[3~": keys.DELETE,
    "OA": keys.UP,
    "OB": keys.DOWN,
    "OH": keys.HOME,
    "OF": keys.END,
}


@dataclass(frozen=True)
class KeyPressed:
    key: str


@dataclass(frozen=True)
class Tick:
    now: float


@dataclass(frozen=True)
class FetchCompleted:
    result: FetchResult


Event = KeyPressed | Tick | FetchCompleted


class EventDispatcher:
    """Single consumption point for input, tick and fetch-completion events.

    Every producer posts into one FIFO queue, so events are consumed strictly in
    the order they arrived regardless of their source.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[Event] = queue.Queue()

    def post(self, event: Event) -> None:
        self._queue.put(event)

    def next_event(self, timeout: float | None = None) -> Event | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Event]:
        drained: list[Event] = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                return drained

def tick_worker(
    dispatcher: EventDispatcher,
    stop_event: threading.Event,
    period: float = TICK_SECONDS,
    clock: Callable[[], float] = time.time,
) -> None:
    while not stop_event.wait(period):
        dispatcher.post(Tick(now=clock()))


def decode_key(data: str) -> str:
    if data in {"\r", "\n"}:
        return keys.ENTER
    if data == "\t":
        return keys.TAB
    if data in {"\x7f", "\b"}:
        return keys.BACKSPACE
    if data == "\x03":
        return keys.QUIT
    if data == "\x04":
        return keys.CTRL_D
    return data


def _line_input_worker(
    dispatcher: EventDispatcher,
    stop_event: threading.Event,
) -> None:
    while not stop_event.is_set():
        try:
            line = sys.stdin.readline()
        except (OSError, ValueError):
            if stop_event.wait(0.2):
                break
            continue
        if line == "":
            if stop_event.wait(0.2):
                break
            continue
        for char in line.rstrip("\n"):
            dispatcher.post(KeyPressed(decode_key(char)))
        dispatcher.post(KeyPressed(keys.ENTER))


def input_worker(
    dispatcher: EventDispatcher,
    stop_event: threading.Event,
) -> None:
    if not sys.stdin.isatty():
        _line_input_worker(dispatcher, stop_event)
        return

    try:
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
    except (OSError, termios.error, ValueError):
        _line_input_worker(dispatcher, stop_event)
        return

    try:
        tty.setcbreak(fd)
        decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        while not stop_event.is_set():
            ready, _, _ = select.select([fd], [], [], 0.2)
            if not ready:
                continue
            data = os.read(fd, 1)
            if not data:
                continue
            key = decoder.decode(data)
            if not key:
                continue
            if key != "\x1b":
                dispatcher.post(KeyPressed(decode_key(key)))
                continue
            sequence = ""
            while select.select([fd], [], [], 0.001)[0]:
                if len(sequence) > 1 and (sequence[-1].isalpha() or sequence.endswith("~") or len(sequence) >= 6):
                    break
                sequence += os.read(fd, 1).decode("utf-8", errors="ignore")
            dispatcher.post(KeyPressed(ESCAPE_SEQUENCES.get(sequence, keys.ESC)))
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        except termios.error as exc:
            logger.warning("Could not restore terminal settings: %s", exc)
