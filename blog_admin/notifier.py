"""
User-visible notifications (toasts in a UI, lines on a terminal)
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List

logger = logging.getLogger(__name__)

LEVELS = ('success', 'info', 'warning', 'error')


@dataclass
class Notification:
    """Single notification"""
    level: str
    message: str
    created_at: float


class Notifier:
    """Collect notifications and fan them out to listeners"""

    def __init__(self, max_history: int = 100):
        self.history: Deque[Notification] = deque(maxlen=max_history)
        self._listeners: List[Callable[[Notification], None]] = []

    def subscribe(self, listener: Callable[[Notification], None]) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, level: str, message: str) -> Notification:
        if level not in LEVELS:
            raise ValueError(f"Unknown notification level: {level}")

        notification = Notification(level=level, message=message, created_at=time.time())
        self.history.append(notification)

        log = logger.warning if level in ('warning', 'error') else logger.info
        log(f"[{level}] {message}")

        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")
        return notification

    def success(self, message: str) -> Notification:
        return self.notify('success', message)

    def info(self, message: str) -> Notification:
        return self.notify('info', message)

    def error(self, message: str) -> Notification:
        return self.notify('error', message)

    def messages(self, level: str = None) -> List[str]:
        return [n.message for n in self.history if level is None or n.level == level]

    def clear(self):
        self.history.clear()
