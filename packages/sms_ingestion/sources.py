"""Device message capability: a live push feed plus an inbox query.

The capability belongs to the device platform; this module only defines the
boundary and a process-local implementation that models an inbox and its
broadcast.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from .errors import PermissionDenied
from .models import RawMessage

logger = structlog.get_logger()

MessageCallback = Callable[[RawMessage], None]


class Subscription:
    """Handle returned by ``MessageSource.subscribe``."""

    def __init__(self, on_remove: Callable[[], None]):
        self._on_remove = on_remove
        self.active = True

    def remove(self) -> None:
        if self.active:
            self.active = False
            self._on_remove()


class MessageSource(ABC):
    """Platform capability for reading provider notifications."""

    @abstractmethod
    def subscribe(self, callback: MessageCallback) -> Subscription:
        """Deliver each newly arriving message to ``callback``.

        Raises SourceUnavailable or PermissionDenied.
        """

    @abstractmethod
    async def list_recent(self, max_count: int, min_date: Optional[datetime] = None) -> List[RawMessage]:
        """Most recent ``max_count`` inbox messages, newest first.

        Raises SourceUnavailable or PermissionDenied.
        """


class InMemoryMessageSource(MessageSource):
    """Inbox plus broadcast held in process memory.

    ``deliver`` stores a message in the inbox and then notifies live
    subscribers, so the live feed and inbox scans surface the same message,
    as they do on a device.
    """

    def __init__(self, permission_granted: bool = True):
        self.permission_granted = permission_granted
        self._inbox: List[RawMessage] = []
        self._subscribers: List[MessageCallback] = []
        self._lock = threading.Lock()

    def _check_permission(self) -> None:
        if not self.permission_granted:
            raise PermissionDenied()

    def subscribe(self, callback: MessageCallback) -> Subscription:
        self._check_permission()
        with self._lock:
            self._subscribers.append(callback)

        def _remove() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return Subscription(_remove)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def store(self, message: RawMessage) -> None:
        """Add to the inbox without broadcasting."""
        with self._lock:
            self._inbox.append(message)

    def deliver(self, message: RawMessage) -> None:
        self.store(message)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(message)
            except Exception as e:
                logger.warning("sms_subscriber_failed", error=str(e))

    async def list_recent(self, max_count: int, min_date: Optional[datetime] = None) -> List[RawMessage]:
        self._check_permission()
        with self._lock:
            inbox = list(self._inbox)
        if min_date is not None:
            inbox = [m for m in inbox if m.captured_at is None or m.captured_at > min_date]
        inbox.sort(key=lambda m: m.timestamp_ms or 0, reverse=True)
        return inbox[:max_count]
