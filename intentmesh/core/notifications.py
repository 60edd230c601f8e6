"""
Notifications — In-process observer registry owned by one IntentMesh

Listeners are called synchronously in subscription order. A listener that
raises is logged and skipped; the remaining listeners still run.
Nothing is persisted.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class NotificationType(Enum):
    INTENTS_CHANGED = "intents_changed"      # payload: List[Intent]
    DRIFTS_DETECTED = "drifts_detected"      # payload: List[DriftEvent]
    ANALYSIS_COMPLETE = "analysis_complete"  # payload: AnalyzeResult


@dataclass(frozen=True)
class Notification:
    type: NotificationType
    payload: Any


Listener = Callable[[Notification], None]


class NotificationBus:
    """Deterministic fan-out with per-listener exception isolation."""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A callable that unsubscribes this listener
        """
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                return False
            return True

    def emit(self, type: NotificationType, payload: Any) -> int:
        """
        Deliver a notification to every listener.

        Returns:
            Number of listeners that handled it without raising
        """
        with self._lock:
            listeners = list(self._listeners)

        notification = Notification(type=type, payload=payload)
        delivered = 0
        for listener in listeners:
            try:
                listener(notification)
                delivered += 1
            except Exception:
                logger.exception("Listener %r failed on %s", listener, type.value)
        return delivered

    def __len__(self) -> int:
        return len(self._listeners)
