from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from jeepney import DBusAddress, DBusErrorResponse, new_method_call
from jeepney.io.blocking import open_dbus_connection
from jeepney.wrappers import unwrap_msg

from termfeed.models import FeedItem

logger = logging.getLogger(__name__)

APP_NAME = "termfeed"
MAX_LISTED_TITLES = 3
EXPIRE_MS = 5000
NOTIFICATIONS = DBusAddress(
    "/org/freedesktop/Notifications",
    bus_name="org.freedesktop.Notifications",
    interface="org.freedesktop.Notifications",
)


def summarize_new_items(items: Sequence[FeedItem]) -> tuple[str, str]:
    count = len(items)
    summary = "1 new article" if count == 1 else f"{count} new articles"
    lines = [f"• {item.title}" for item in items[:MAX_LISTED_TITLES]]
    if count > MAX_LISTED_TITLES:
        lines.append(f"...and {count - MAX_LISTED_TITLES} more")
    return summary, "\n".join(lines)


def send_notification(summary: str, body: str) -> bool:
    """Show a desktop notification through the freedesktop D-Bus service."""
    message = new_method_call(
        NOTIFICATIONS,
        "Notify",
        "susssasa{sv}i",
        (APP_NAME, 0, "", summary, body, [], {}, EXPIRE_MS),
    )
    try:
        with open_dbus_connection(bus="SESSION") as connection:
            unwrap_msg(connection.send_and_get_reply(message, timeout=5))
    except (OSError, KeyError, ValueError, DBusErrorResponse) as exc:
        # KeyError: no session bus address in the environment
        logger.error("Failed to send notification: %s", exc)
        return False
    logger.info("Sent notification: %s", summary)
    return True


def notify_in_background(summary: str, body: str) -> None:
    threading.Thread(target=send_notification, args=(summary, body), name="notify", daemon=True).start()
