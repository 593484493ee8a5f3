"""In-process publish/subscribe for user-facing notifications.

Components publish toasts onto a ``NotificationBus`` they were handed instead
of a global listener list, so each screen (or test) owns its own bus.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from eventpass.client.errors import ErrorCode, EventPassError

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    title: str
    message: str = ""
    code: Optional[ErrorCode] = None


Listener = Callable[[Notification], None]


class NotificationBus:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed for %r", notification.title)

    def success(self, title: str, message: str = "") -> None:
        self.publish(Notification(NotificationLevel.SUCCESS, title, message))

    def info(self, title: str, message: str = "") -> None:
        self.publish(Notification(NotificationLevel.INFO, title, message))

    def warning(self, title: str, message: str = "", code: Optional[ErrorCode] = None) -> None:
        self.publish(Notification(NotificationLevel.WARNING, title, message, code))

    def error(self, title: str, message: str = "", code: Optional[ErrorCode] = None) -> None:
        self.publish(Notification(NotificationLevel.ERROR, title, message, code))

    def report(self, title: str, exc: EventPassError) -> None:
        """Publish an error notification for a taxonomy error."""
        self.error(title, exc.message, exc.code)
