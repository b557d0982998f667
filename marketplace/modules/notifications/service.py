"""Persists in-app notifications and queues their real-time push."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.notification import Notification
from marketplace.modules.notifications.constants import EVENT_NOTIFICATION_NEW
from marketplace.modules.notifications.realtime import RealtimeBatch

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, db: AsyncSession, realtime: RealtimeBatch) -> None:
        self.db = db
        self.realtime = realtime

    async def emit_and_persist(
        self,
        users: uuid.UUID | Iterable[uuid.UUID | None] | None,
        type: str,
        title: str,
        message: str = "",
        entity: uuid.UUID | None = None,
        data: dict | None = None,
    ) -> list[Notification]:
        """Persist one notification per recipient and queue a real-time push.

        Runs inside a SAVEPOINT so a failure here never aborts the caller's
        transaction; failures are logged and an empty list is returned.
        """
        if users is None:
            return []
        candidates = [users] if isinstance(users, uuid.UUID) else list(users)
        user_ids = list(dict.fromkeys(u for u in candidates if u is not None))
        if not user_ids:
            return []

        notifications = [
            Notification(
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                entity_id=entity,
                data=jsonable_encoder(data or {}),
            )
            for user_id in user_ids
        ]
        try:
            async with self.db.begin_nested():
                self.db.add_all(notifications)
        except SQLAlchemyError as exc:
            logger.warning(
                "Could not persist %s notification for %d users: %s", type, len(user_ids), exc
            )
            return []

        for notification in notifications:
            self.realtime.to_user(
                notification.user_id,
                EVENT_NOTIFICATION_NEW,
                {
                    "id": str(notification.id),
                    "type": notification.type,
                    "title": notification.title,
                    "message": notification.message,
                    "entity": str(entity) if entity else None,
                    "data": notification.data,
                    "created_at": notification.created_at,
                },
            )
        return notifications
