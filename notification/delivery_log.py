import logging
from datetime import datetime
from typing import Optional

from database.models import NotificationLog, DeliveryStatus, utcnow
from database.repositories import DeliveryLogRepository
from notification.exceptions import InvalidStatusTransition

logger = logging.getLogger(__name__)

CALLBACK_EVENTS = {
    'delivered': DeliveryStatus.DELIVERED,
    'opened': DeliveryStatus.OPENED,
}


class DeliveryLogger:
    """
    Audit trail of channel attempts: one NotificationLog row per channel
    per dispatch. Status only moves forward (see DELIVERY_TRANSITIONS).
    """

    def __init__(self, repo: DeliveryLogRepository):
        self.repo = repo

    def open(
        self,
        notification_id: int,
        user_id: int,
        type: str,
        channel: str,
        title: Optional[str] = None,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> NotificationLog:
        return self.repo.create(
            notification_id=notification_id,
            user_id=user_id,
            type=type,
            channel=channel,
            title=title,
            message=message,
            created_at=now,
        )

    def transition(
        self,
        log: NotificationLog,
        target: DeliveryStatus,
        now: Optional[datetime] = None,
        error: Optional[str] = None,
        provider_message_id: Optional[str] = None,
    ) -> NotificationLog:
        """
        Raises:
            InvalidStatusTransition: if `target` is not reachable from the current status
        """
        target = DeliveryStatus(target)
        if not log.can_transition_to(target):
            raise InvalidStatusTransition(f"notification_log {log.id}", log.status, target.value)

        now = now or utcnow()
        log.status = target.value
        log.updated_at = now

        if target == DeliveryStatus.PROCESSING:
            log.attempts = (log.attempts or 0) + 1
        elif target == DeliveryStatus.SENT:
            log.sent_at = now
            log.provider_message_id = provider_message_id
        elif target == DeliveryStatus.DELIVERED:
            log.delivered_at = now
        elif target == DeliveryStatus.OPENED:
            log.opened_at = now
            if log.delivered_at is None:
                log.delivered_at = now
        elif target == DeliveryStatus.FAILED:
            log.failed_at = now
            log.error_message = error
        elif target == DeliveryStatus.CANCELLED:
            log.error_message = error

        self.repo.db.flush()
        return log

    def set_recipient(self, log: NotificationLog, recipient: Optional[str]) -> None:
        log.recipient = recipient
        self.repo.db.flush()

    def record_event(self, log_id: int, event: str, now: Optional[datetime] = None) -> NotificationLog:
        """
        Apply a provider callback ("delivered" or "opened") to a sent log.

        Raises:
            LookupError: unknown log id
            ValueError: unknown event
            InvalidStatusTransition: the log is not in a state that accepts the event
        """
        target = CALLBACK_EVENTS.get(event)
        if target is None:
            raise ValueError(f"Unknown delivery event: {event}")
        log = self.repo.get_by_id(log_id)
        if log is None:
            raise LookupError(f"No delivery log {log_id}")
        self.transition(log, target, now=now)
        logger.info(f"Delivery log {log_id} ({log.channel}) marked {target.value}")
        return log
