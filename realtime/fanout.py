"""Room-addressed fanout of committed changes.

Services call publish() only after their transaction has committed. Delivery
is best-effort: a room nobody has joined simply drops the event, and an emit
failure is logged but never reaches the caller whose action already
succeeded. Clients reconcile by re-reading the list endpoints on reconnect.
"""

from __future__ import annotations

import logging
from typing import Any

MESSAGE_POSTED = "message-posted"
MESSAGE_EDITED = "message-edited"
MESSAGE_DELETED = "message-deleted"
MESSAGE_PINNED = "message-pinned"
DM_MESSAGE_POSTED = "dm-message-posted"
DM_MESSAGE_EDITED = "dm-message-edited"
DM_MESSAGE_DELETED = "dm-message-deleted"
THREAD_DELETED = "thread-deleted"


class SocketIOPublisher:
    """Publishes to Flask-SocketIO rooms named ``thread:<id>`` / ``dm:<id>``."""

    def __init__(self, socketio):
        self.socketio = socketio

    def publish(self, room: str, event: str, payload: Any) -> None:
        try:
            self.socketio.emit(event, payload, to=room)
        except Exception as exc:  # noqa: BLE001
            logging.warning("[fanout] %s -> %s failed: %s", event, room, exc)
