import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any

from sqlalchemy import select, update, delete, case, and_, or_

from database.models import NotificationQueueItem, QueueStatus, utcnow
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

# Higher rank is picked first.
_PRIORITY_RANK = case(
    (NotificationQueueItem.priority == 'critical', 2),
    (NotificationQueueItem.priority == 'high', 1),
    else_=0,
)


class QueueRepository(BaseRepository):
    def enqueue(
        self,
        user_id: int,
        type: str,
        channel: str,
        payload: Dict[str, Any],
        priority: str = 'normal',
        scheduled_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        max_attempts: int = 3,
    ) -> NotificationQueueItem:
        scheduled_at = scheduled_at or utcnow()
        item = NotificationQueueItem(
            user_id=user_id,
            type=type,
            channel=channel,
            priority=priority,
            payload=payload,
            scheduled_at=scheduled_at,
            expires_at=expires_at,
            status=QueueStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts,
            next_attempt_at=scheduled_at,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def get_by_id(self, item_id: int) -> Optional[NotificationQueueItem]:
        return self.db.get(NotificationQueueItem, item_id, populate_existing=True)

    def find_due_ids(self, now: datetime, limit: int = 50) -> List[int]:
        """
        Ids of pending items that are due and not expired, highest priority
        first, then oldest schedule first. Items waiting on a retry backoff
        are due once `next_attempt_at` has passed.
        """
        stmt = (
            select(NotificationQueueItem.id)
            .where(
                NotificationQueueItem.status == QueueStatus.PENDING.value,
                NotificationQueueItem.scheduled_at <= now,
                or_(
                    NotificationQueueItem.next_attempt_at.is_(None),
                    NotificationQueueItem.next_attempt_at <= now,
                ),
                or_(
                    NotificationQueueItem.expires_at.is_(None),
                    NotificationQueueItem.expires_at > now,
                ),
            )
            .order_by(_PRIORITY_RANK.desc(), NotificationQueueItem.scheduled_at.asc(), NotificationQueueItem.id.asc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def claim(self, item_id: int, worker_id: str, now: datetime) -> Optional[NotificationQueueItem]:
        """
        Atomically move one item pending -> processing.

        Returns the claimed item, or None when another processor got there
        first (or the item is no longer pending).
        """
        stmt = (
            update(NotificationQueueItem)
            .where(
                NotificationQueueItem.id == item_id,
                NotificationQueueItem.status == QueueStatus.PENDING.value,
            )
            .values(
                status=QueueStatus.PROCESSING.value,
                claimed_by=worker_id,
                claimed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            return None
        return self.get_by_id(item_id)

    def release_stale_claims(self, now: datetime, claim_timeout_minutes: int = 30) -> int:
        """Return items stuck in processing (crashed worker) to pending."""
        threshold = now - timedelta(minutes=claim_timeout_minutes)
        stmt = (
            update(NotificationQueueItem)
            .where(
                NotificationQueueItem.status == QueueStatus.PROCESSING.value,
                NotificationQueueItem.claimed_at < threshold,
            )
            .values(status=QueueStatus.PENDING.value, claimed_by=None, claimed_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        count = self.db.execute(stmt).rowcount
        if count:
            logger.warning(f"Released {count} stale queue claims")
        return count

    def expire_overdue(self, now: datetime) -> int:
        """Terminally fail pending items whose expiry has passed."""
        stmt = (
            update(NotificationQueueItem)
            .where(
                NotificationQueueItem.status == QueueStatus.PENDING.value,
                NotificationQueueItem.expires_at.is_not(None),
                NotificationQueueItem.expires_at <= now,
            )
            .values(
                status=QueueStatus.FAILED.value,
                next_attempt_at=None,
                error_message='expired',
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        count = self.db.execute(stmt).rowcount
        if count:
            logger.info(f"Expired {count} queue items")
        return count

    def mark_sent(self, item: NotificationQueueItem, now: datetime) -> None:
        item.status = QueueStatus.SENT.value
        item.next_attempt_at = None
        item.last_attempt_at = now
        item.updated_at = now
        item.error_message = None
        item.claimed_by = None
        item.claimed_at = None
        self.db.flush()

    def schedule_retry(self, item: NotificationQueueItem, error: str, now: datetime, next_attempt_at: datetime) -> None:
        item.status = QueueStatus.PENDING.value
        item.next_attempt_at = next_attempt_at
        item.last_attempt_at = now
        item.updated_at = now
        item.error_message = error
        item.claimed_by = None
        item.claimed_at = None
        self.db.flush()

    def mark_failed(self, item: NotificationQueueItem, error: str, now: datetime) -> None:
        item.status = QueueStatus.FAILED.value
        item.next_attempt_at = None
        item.last_attempt_at = now
        item.updated_at = now
        item.error_message = error
        item.claimed_by = None
        item.claimed_at = None
        self.db.flush()

    def delete_processed(self, older_than_days: int, now: datetime) -> int:
        cutoff = now - timedelta(days=older_than_days)
        stmt = delete(NotificationQueueItem).where(
            and_(
                NotificationQueueItem.status == QueueStatus.SENT.value,
                NotificationQueueItem.last_attempt_at < cutoff,
            )
        ).execution_options(synchronize_session=False)
        count = self.db.execute(stmt).rowcount
        if count:
            logger.info(f"Cleaned up {count} processed queue items")
        return count
