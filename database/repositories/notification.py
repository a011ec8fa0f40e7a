import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any

from sqlalchemy import select, update, delete, func, or_

from database.models import Notification, NotificationLog, NotificationQueueItem, utcnow
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class NotificationRepository(BaseRepository):
    def create(
        self,
        user_id: int,
        type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        priority: str = 'normal',
        expires_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data or {},
            priority=priority,
            expires_at=expires_at,
            created_at=created_at or utcnow(),
        )
        self.db.add(notification)
        self.db.flush()  # Generate ID
        return notification

    def get_by_id(self, notification_id: int) -> Optional[Notification]:
        return self.db.get(Notification, notification_id)

    def list_for_user(
        self,
        user_id: int,
        unread_only: bool = False,
        include_expired: bool = False,
        limit: int = 50,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> List[Notification]:
        now = now or utcnow()
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.read_at.is_(None))
        if not include_expired:
            stmt = stmt.where(or_(Notification.expires_at.is_(None), Notification.expires_at > now))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())

    def count_unread(self, user_id: int, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
            or_(Notification.expires_at.is_(None), Notification.expires_at > now),
        )
        return self.db.execute(stmt).scalar_one()

    def mark_all_read(self, user_id: int, now: Optional[datetime] = None) -> int:
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read_at.is_(None))
            .values(read_at=now or utcnow())
        )
        return self.db.execute(stmt).rowcount

    def delete_expired(self, older_than_days: int, now: Optional[datetime] = None) -> int:
        """
        Delete notifications whose expiry passed more than `older_than_days` ago,
        together with their delivery logs. Queue items pointing at them keep
        their row with `notification_id` cleared.
        """
        cutoff = (now or utcnow()) - timedelta(days=older_than_days)
        expired_ids = select(Notification.id).where(
            Notification.expires_at.is_not(None),
            Notification.expires_at < cutoff,
        )
        # Bulk deletes bypass ORM cascades and SQLite leaves foreign keys unenforced
        self.db.execute(
            delete(NotificationLog)
            .where(NotificationLog.notification_id.in_(expired_ids))
            .execution_options(synchronize_session=False)
        )
        self.db.execute(
            update(NotificationQueueItem)
            .where(NotificationQueueItem.notification_id.in_(expired_ids))
            .values(notification_id=None)
            .execution_options(synchronize_session=False)
        )
        stmt = delete(Notification).where(
            Notification.id.in_(expired_ids)
        ).execution_options(synchronize_session=False)
        count = self.db.execute(stmt).rowcount
        if count:
            logger.info(f"Deleted {count} expired notifications")
        return count
