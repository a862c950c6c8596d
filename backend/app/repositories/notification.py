"""Repository layer for notifications.

Also serves as the engine's Notifier. A notification with a ``dedup_key``
is stored at most once; repeats are dropped and reported as not sent. New
notifications are handed to an optional publisher (the SSE event bus in the
API process, an HTTP pusher in the worker).
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import NotificationModel

logger = logging.getLogger("app.repositories.notification")

Publisher = Callable[[NotificationModel], None]


def notification_to_dict(row: NotificationModel) -> dict:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "title": row.title,
        "message": row.message,
        "priority": row.priority,
        "kind": row.kind,
        "related_task_id": row.related_task_id,
        "read": row.read,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


class NotificationRepository:
    """Data access layer for notifications."""

    def __init__(self, session: AsyncSession, publisher: Optional[Publisher] = None):
        self.session = session
        self.publisher = publisher

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        priority: str = "medium",
        *,
        kind: str = "notification",
        related_task_id: Optional[str] = None,
        dedup_key: Optional[str] = None,
    ) -> bool:
        """Store a notification. Returns False when ``dedup_key`` was already used."""
        if dedup_key and await self.exists(dedup_key):
            logger.info(f"Notification {dedup_key} already sent, dropped")
            return False

        row = NotificationModel(
            user_id=user_id,
            title=title,
            message=message,
            priority=priority,
            kind=kind,
            related_task_id=related_task_id,
            dedup_key=dedup_key,
        )
        try:
            # Savepoint so a unique-key race doesn't roll back the caller's work
            async with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError:
            logger.info(f"Notification {dedup_key} stored concurrently, dropped")
            return False

        logger.info(f"Notification to {user_id}: {title} ({kind})")
        if self.publisher is not None:
            try:
                self.publisher(row)
            except Exception as e:
                logger.error(f"Notification {row.id}: publish failed: {e}")
        return True

    async def exists(self, dedup_key: str) -> bool:
        result = await self.session.execute(
            select(NotificationModel.id).where(NotificationModel.dedup_key == dedup_key)
        )
        return result.first() is not None

    async def list_for_user(
        self,
        user_id: str,
        unread_only: bool = False,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[NotificationModel], int]:
        query = select(NotificationModel).where(NotificationModel.user_id == user_id)
        count_query = (
            select(func.count())
            .select_from(NotificationModel)
            .where(NotificationModel.user_id == user_id)
        )
        if unread_only:
            query = query.where(NotificationModel.read.is_(False))
            count_query = count_query.where(NotificationModel.read.is_(False))

        query = query.order_by(NotificationModel.created_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.session.execute(query)
        rows = list(result.scalars().all())
        count_result = await self.session.execute(count_query)
        return rows, count_result.scalar() or 0

    async def mark_read(self, notification_id: str, user_id: Optional[str] = None) -> bool:
        query = update(NotificationModel).where(NotificationModel.id == notification_id)
        if user_id is not None:
            query = query.where(NotificationModel.user_id == user_id)
        result = await self.session.execute(
            query
            .values(read=True)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return result.rowcount == 1
