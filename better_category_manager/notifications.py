"""In-memory notification surface for success and error banners."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from .models import Notification, NotificationKind

logger = logging.getLogger(__name__)


class NotificationCenter:
    """Collects notifications for the UI shell to display."""

    def __init__(self, default_duration_ms: int = 3000):
        """Initialize empty notification list."""
        self.default_duration_ms = default_duration_ms
        self._notifications: List[Notification] = []
        self._next_id = 1

    def show(
        self,
        message: str,
        kind: NotificationKind = NotificationKind.INFO,
        duration_ms: Optional[int] = None,
    ) -> Notification:
        """Add a notification. A duration of 0 keeps it until dismissed."""
        notification = Notification(
            id=self._next_id,
            message=message,
            kind=kind,
            duration_ms=self.default_duration_ms if duration_ms is None else duration_ms,
        )
        self._next_id += 1
        self._notifications.append(notification)

        log = logger.error if kind == NotificationKind.ERROR else logger.info
        log(f"Notification [{kind.value}]: {message}")
        return notification

    def success(self, message: str) -> Notification:
        return self.show(message, NotificationKind.SUCCESS)

    def error(self, message: str) -> Notification:
        # Errors stay until dismissed
        return self.show(message, NotificationKind.ERROR, duration_ms=0)

    def dismiss(self, notification_id: int) -> bool:
        """Remove a notification. Returns False if it was already gone."""
        for i, notification in enumerate(self._notifications):
            if notification.id == notification_id:
                del self._notifications[i]
                return True
        return False

    def cleanup_expired(self) -> int:
        """Remove timed notifications whose duration has passed. Returns count removed."""
        now = datetime.now()
        kept = [
            n for n in self._notifications
            if n.sticky or now < n.created_at + timedelta(milliseconds=n.duration_ms)
        ]
        removed = len(self._notifications) - len(kept)
        if removed:
            self._notifications = kept
            logger.debug(f"Cleaned up {removed} expired notifications")
        return removed

    def active(self) -> List[Notification]:
        self.cleanup_expired()
        return list(self._notifications)

    def of_kind(self, kind: NotificationKind) -> List[Notification]:
        self.cleanup_expired()
        return [n for n in self._notifications if n.kind == kind]

    def clear(self) -> None:
        self._notifications.clear()
