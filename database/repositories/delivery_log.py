import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any

from sqlalchemy import select, func, case

from database.models import NotificationLog, DeliveryStatus, utcnow
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

_STAT_STATUSES = (
    DeliveryStatus.SENT,
    DeliveryStatus.DELIVERED,
    DeliveryStatus.OPENED,
    DeliveryStatus.FAILED,
    DeliveryStatus.CANCELLED,
)


class DeliveryLogRepository(BaseRepository):
    def create(
        self,
        notification_id: int,
        user_id: int,
        type: str,
        channel: str,
        title: Optional[str] = None,
        message: Optional[str] = None,
        recipient: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> NotificationLog:
        now = created_at or utcnow()
        log = NotificationLog(
            notification_id=notification_id,
            user_id=user_id,
            type=type,
            channel=channel,
            title=title,
            message=message,
            recipient=recipient,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def get_by_id(self, log_id: int) -> Optional[NotificationLog]:
        return self.db.get(NotificationLog, log_id)

    def list_for_notification(self, notification_id: int) -> List[NotificationLog]:
        stmt = (
            select(NotificationLog)
            .where(NotificationLog.notification_id == notification_id)
            .order_by(NotificationLog.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def stats_by_channel(self, days: int = 30, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        since = (now or utcnow()) - timedelta(days=days)
        columns = [
            func.count(case((NotificationLog.status == status.value, 1))).label(status.value)
            for status in _STAT_STATUSES
        ]
        stmt = (
            select(NotificationLog.channel, func.count(NotificationLog.id).label('total'), *columns)
            .where(NotificationLog.created_at >= since)
            .group_by(NotificationLog.channel)
            .order_by(NotificationLog.channel)
        )
        rows = self.db.execute(stmt).mappings().all()
        return [dict(row) for row in rows]
