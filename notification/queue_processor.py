"""
Queue Processor

Periodic batch step over the durable notification_queue table. Each pass:

1. releases claims left behind by crashed workers
2. fails pending items whose expiry has passed
3. claims due items one by one (compare-and-swap pending -> processing)
4. re-runs the pipeline for each item's single channel
5. settles the item: sent, retry with backoff, or terminal failure
6. deletes old processed items and long-expired notifications

Retries wait backoff_base_minutes ** attempts minutes (5, 25, 125, ...).
"""

import logging
import os
import socket
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Optional, Dict, List

from sqlalchemy.orm import sessionmaker

from core.config_loader import QueueConfig
from database.models import NotificationQueueItem, QueueStatus
from database.repositories import QueueRepository
from database.uow import notification_uow
from notification.exceptions import InvalidStatusTransition
from notification.results import DispatchOutcome, DispatchResult
from notification.service import NotificationService

logger = logging.getLogger(__name__)

# Outcomes retrying cannot change.
TERMINAL_OUTCOMES = frozenset({
    DispatchOutcome.CANCELLED,
    DispatchOutcome.NO_CHANNELS,
    DispatchOutcome.INVALID_PAYLOAD,
})

QUEUE_TRANSITIONS = {
    QueueStatus.PENDING: {QueueStatus.PROCESSING, QueueStatus.FAILED},
    QueueStatus.PROCESSING: {QueueStatus.PENDING, QueueStatus.SENT, QueueStatus.FAILED},
    QueueStatus.SENT: set(),
    QueueStatus.FAILED: set(),
}


def _default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def _check_transition(item: NotificationQueueItem, target: QueueStatus) -> None:
    current = QueueStatus(item.status)
    if target not in QUEUE_TRANSITIONS[current]:
        raise InvalidStatusTransition(f"queue_item {item.id}", current.value, target.value)


class QueueProcessor:
    def __init__(
        self,
        service: NotificationService,
        session_factory: Optional[sessionmaker] = None,
        config: Optional[QueueConfig] = None,
        worker_id: Optional[str] = None,
    ):
        self.service = service
        self.session_factory = session_factory
        self.config = config or QueueConfig()
        self.worker_id = worker_id or _default_worker_id()

    def _uow(self):
        return notification_uow(self.session_factory)

    def backoff_delay(self, attempts: int) -> timedelta:
        return timedelta(minutes=self.config.backoff_base_minutes ** attempts)

    def process_queue(self, now: Optional[datetime] = None, stop_event: Optional[threading.Event] = None) -> int:
        """
        Run one pass over due items.

        Returns:
            Number of items sent in this pass
        """
        now = now or self.service.now()

        with self._uow() as store:
            store.queue.release_stale_claims(now, self.config.claim_timeout_minutes)
            store.queue.expire_overdue(now)
            item_ids = store.queue.find_due_ids(now, limit=self.config.batch_size)

        statuses: List[Optional[QueueStatus]] = []
        if item_ids:
            logger.info(f"Processing {len(item_ids)} queued notifications")

            def run(item_id: int) -> Optional[QueueStatus]:
                if stop_event is not None and stop_event.is_set():
                    return None
                return self.process_item(item_id, now)

            if self.config.worker_count == 1 or len(item_ids) == 1:
                statuses = [run(item_id) for item_id in item_ids]
            else:
                workers = min(self.config.worker_count, len(item_ids))
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="queue") as executor:
                    statuses = list(executor.map(run, item_ids))

        sent = sum(1 for status in statuses if status == QueueStatus.SENT)
        if item_ids:
            retried = sum(1 for status in statuses if status == QueueStatus.PENDING)
            failed = sum(1 for status in statuses if status == QueueStatus.FAILED)
            logger.info(f"Queue pass done: {sent} sent, {retried} rescheduled, {failed} failed")

        self.cleanup(now)
        return sent

    def process_item(self, item_id: int, now: datetime) -> Optional[QueueStatus]:
        """
        Claim, deliver and settle one item.

        Returns:
            The item's new status, or None if another processor claimed it first
        """
        with self._uow() as store:
            item = store.queue.claim(item_id, self.worker_id, now)
            if item is None:
                logger.debug(f"Queue item {item_id} already claimed")
                return None
            job = {
                'user_id': item.user_id,
                'type': item.type,
                'channel': item.channel,
                'priority': item.priority,
                'variables': item.variables,
                'options': item.options,
                'notification_id': item.notification_id,
            }

        try:
            result = self.service.deliver_queued(
                user_id=job['user_id'],
                type=job['type'],
                channel=job['channel'],
                data=job['variables'],
                priority=job['priority'],
                notification_id=job['notification_id'],
                language=job['options'].get('language'),
                expires_in_hours=job['options'].get('expires_in_hours'),
                now=now,
            )
        except Exception as e:
            logger.error(f"Queue item {item_id} delivery raised: {e}")
            result = DispatchResult(job['user_id'], job['type'], DispatchOutcome.FAILED,
                                    notification_id=job['notification_id'], error=str(e))

        with self._uow() as store:
            item = store.queue.get_by_id(item_id)
            if item is None:
                logger.warning(f"Queue item {item_id} disappeared while processing")
                return None
            if item.claimed_by != self.worker_id:
                logger.warning(f"Queue item {item_id} claim lost to {item.claimed_by}; not settling")
                return None
            if item.notification_id is None and result.notification_id is not None:
                item.notification_id = result.notification_id
            return self._settle(store.queue, item, result, now)

    def _settle(self, queue: QueueRepository, item: NotificationQueueItem, result: DispatchResult, now: datetime) -> QueueStatus:
        if result.outcome == DispatchOutcome.SENT:
            _check_transition(item, QueueStatus.SENT)
            item.attempts = min(item.attempts + 1, item.max_attempts)
            queue.mark_sent(item, now)
            logger.info(f"Queue item {item.id} sent ({item.type} via {item.channel})")
            return QueueStatus.SENT

        error = result.error or result.outcome.value
        item.attempts = min(item.attempts + 1, item.max_attempts)

        if result.outcome in TERMINAL_OUTCOMES:
            _check_transition(item, QueueStatus.FAILED)
            queue.mark_failed(item, error, now)
            logger.info(f"Queue item {item.id} not deliverable ({result.outcome.value}): {error}")
            return QueueStatus.FAILED

        if item.attempts < item.max_attempts:
            _check_transition(item, QueueStatus.PENDING)
            next_attempt_at = now + self.backoff_delay(item.attempts)
            queue.schedule_retry(item, error, now, next_attempt_at)
            logger.warning(
                f"Queue item {item.id} attempt {item.attempts}/{item.max_attempts} failed: {error}; "
                f"retrying at {next_attempt_at.isoformat()}"
            )
            return QueueStatus.PENDING

        _check_transition(item, QueueStatus.FAILED)
        queue.mark_failed(item, error, now)
        logger.error(f"Queue item {item.id} failed permanently after {item.attempts} attempts: {error}")
        return QueueStatus.FAILED

    def cleanup(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Delete processed queue items and long-expired notifications."""
        now = now or self.service.now()
        with self._uow() as store:
            processed = store.queue.delete_processed(self.config.processed_retention_days, now)
            expired = store.notifications.delete_expired(self.config.expired_notification_retention_days, now)
        return {'queue_items': processed, 'notifications': expired}
