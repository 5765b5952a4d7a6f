from __future__ import annotations

import base64
import sys
from typing import TextIO


def osc52_sequence(text: str) -> str:
    payload = base64.b64encode(text.encode("utf-8")).decode("ascii")
    return f"\x1b]52;c;{payload}\x07"


def copy_to_clipboard(text: str, stream: TextIO | None = None) -> None:
    """Ask the terminal to place ``text`` on the system clipboard (OSC 52)."""
    target = stream if stream is not None else sys.stdout
    target.write(osc52_sequence(text))
    target.flush()
