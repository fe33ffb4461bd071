"""
In-app notifications stored per user at ``notifications/{uid}``.

Creating a notification is a side effect of another action (reviewer
assignment, status change), so a failed write is logged and swallowed.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError
import structlog

from invoicehub.models.notification import Notification, NotificationType
from invoicehub.paths import notifications_path
from invoicehub.services.realtime_db import RealtimeDB

logger = structlog.get_logger()

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _newest_first(notification: Notification) -> datetime:
    ts = notification.created_at
    if ts is None:
        return _EPOCH
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class NotificationService:
    def __init__(self, db: RealtimeDB):
        self.db = db

    async def create_notification(
        self,
        user_id: str,
        message: str,
        type: NotificationType = "info",
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[str]:
        notification = Notification(message=message, type=type, metadata=metadata or {})
        try:
            key, _ = await self.db.create_item(
                notifications_path(user_id), notification.to_node(exclude={"id", "created_at"})
            )
        except Exception as e:
            logger.error("notification_create_failed", user_id=user_id, error=str(e))
            return None
        logger.info("notification_created", user_id=user_id, notification_id=key, type=type)
        return key

    async def notify_many(
        self,
        user_ids: list[str],
        message: str,
        type: NotificationType = "info",
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        sent = 0
        for uid in user_ids:
            if await self.create_notification(uid, message, type, metadata):
                sent += 1
        return sent

    async def list_notifications(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        notifications = []
        for key, node in await self.db.get_items(notifications_path(user_id)):
            if not isinstance(node, dict):
                continue
            try:
                notification = Notification.from_node(node, id=key)
            except ValidationError as e:
                logger.warning("notification_decode_failed", notification_id=key, error=str(e))
                continue
            if unread_only and notification.read:
                continue
            notifications.append(notification)
        notifications.sort(key=_newest_first, reverse=True)
        return notifications

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        """Returns False when the notification does not exist."""
        path = f"{notifications_path(user_id)}/{notification_id}"
        if await self.db.get_data(path) is None:
            return False
        await self.db.update_data(path, {"read": True})
        return True

    async def mark_all_read(self, user_id: str) -> int:
        unread = await self.list_notifications(user_id, unread_only=True)
        if not unread:
            return 0
        await self.db.update_data(
            notifications_path(user_id),
            {f"{n.id}/read": True for n in unread},
            stamp=False,
        )
        return len(unread)
