"""
Notifier

Consumes committed booking events: stores them as Notification rows for the
recipient and pushes them to the recipient's live connection when one is
registered. Delivery is best-effort; a failure here is logged and never
reaches the booking transaction that produced the event.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from slotbook.models.notification import Notification
from slotbook.services.events import BookingEvent

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Maps a user id to that user's live connection handle.

    A handle is anything with a ``send(payload: dict)`` method. Registering a
    second connection for the same user replaces the first.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, user_id, handle) -> None:
        with self._lock:
            self._connections[str(user_id)] = handle
        logger.info("User %s connected", user_id)

    def unregister(self, user_id, handle=None) -> None:
        """Drop the user's connection; with ``handle`` only if it is still the current one."""
        with self._lock:
            current = self._connections.get(str(user_id))
            if current is None or (handle is not None and current is not handle):
                return
            del self._connections[str(user_id)]
        logger.info("User %s disconnected", user_id)

    def lookup(self, user_id) -> Optional[Any]:
        with self._lock:
            return self._connections.get(str(user_id))

    def online_users(self) -> List[str]:
        with self._lock:
            return list(self._connections)


class WebSocketConnection:
    """Connection handle wrapping a FastAPI websocket served on ``loop``."""

    def __init__(self, websocket, loop: asyncio.AbstractEventLoop) -> None:
        self.websocket = websocket
        self.loop = loop

    def send(self, payload: Dict[str, Any]) -> None:
        # Called from worker threads; hand the coroutine to the websocket's loop
        future = asyncio.run_coroutine_threadsafe(self.websocket.send_json(payload), self.loop)
        future.add_done_callback(_log_send_failure)


def _log_send_failure(future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Push notification failed: %s", exc)


class Notifier:
    def __init__(self, session_factory: Callable[[], Session], registry: ConnectionRegistry):
        self._session_factory = session_factory
        self.registry = registry

    def publish(self, events: List[BookingEvent]) -> None:
        """Deliver every event; one failing event does not stop the others."""
        for event in events:
            try:
                self.notify(event)
            except Exception as e:
                logger.error(
                    "Error delivering %s for booking %s: %s",
                    event.type,
                    event.booking_id,
                    e,
                    exc_info=True,
                )

    def notify(self, event: BookingEvent) -> None:
        self._store(event)
        self._push(event)

    def _store(self, event: BookingEvent) -> None:
        db = self._session_factory()
        try:
            db.add(Notification(
                user_id=event.recipient_user_id,
                title=event.title,
                message=event.message,
                type=event.type,
                reference_id=event.booking_id,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _push(self, event: BookingEvent) -> None:
        handle = self.registry.lookup(event.recipient_user_id)
        if handle is None:
            return
        handle.send(event.to_dict())
        logger.debug("Pushed %s to user %s", event.type, event.recipient_user_id)


# Process-wide registry; the websocket route registers connections here
connection_registry = ConnectionRegistry()
