"""User-facing error channel with auto-dismissing notifications."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .config import NOTIFICATION_TTL_SECONDS
from .utils.datetime_helper import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    message: str
    created_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    def expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and (now or utcnow()) >= self.expires_at


class Notifier:
    """Collects human-readable error messages for the presentation layer."""

    def __init__(self, ttl_seconds: float = NOTIFICATION_TTL_SECONDS):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._notifications: List[Notification] = []
        self._subscribers: List[Callable[[Notification], None]] = []

    def subscribe(self, callback: Callable[[Notification], None]) -> None:
        self._subscribers.append(callback)

    def notify(self, message: str) -> Notification:
        now = utcnow()
        notification = Notification(message=message, created_at=now, expires_at=now + self.ttl)
        self._notifications = [n for n in self._notifications if not n.expired(now)]
        self._notifications.append(notification)
        logger.warning(message)
        for callback in self._subscribers:
            callback(notification)
        return notification

    def active(self, now: Optional[datetime] = None) -> List[Notification]:
        """Undismissed notifications; expired ones are dropped."""
        now = now or utcnow()
        self._notifications = [n for n in self._notifications if not n.expired(now)]
        return list(self._notifications)

    def dismiss(self, notification: Notification) -> None:
        if notification in self._notifications:
            self._notifications.remove(notification)

