"""
In-process publish/subscribe for processing notifications.
"""
import logging
import threading
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, Dict[str, Any]], None]


class EventBroadcaster:
    """
    Fan out events to subscribers.

    Subscribers are called synchronously on the broadcasting thread with
    ``(event, payload)``. A subscriber that raises is logged and skipped;
    the remaining subscribers and the caller are unaffected.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event, payload)
            except Exception:
                logger.exception(f"Subscriber {callback!r} failed on {event}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
