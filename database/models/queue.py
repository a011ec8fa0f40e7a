from enum import Enum

from sqlalchemy import Column, Integer, Text, ForeignKey, Index

from .base import Base, JSONType, UTCDateTime, utcnow


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class NotificationQueueItem(Base):
    """
    Durable, schedulable delivery task for one (user, type, channel).

    Invariants:
        attempts <= max_attempts
        next_attempt_at is NULL iff the item is terminal (sent or failed)
    """
    __tablename__ = 'notification_queue'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    type = Column(Text, nullable=False)
    channel = Column(Text, nullable=False)
    priority = Column(Text, nullable=False, default='normal')

    scheduled_at = Column(UTCDateTime, nullable=False, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=True)

    status = Column(Text, nullable=False, default=QueueStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_attempt_at = Column(UTCDateTime, nullable=True)
    last_attempt_at = Column(UTCDateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    # {"variables": {...}, "options": {...}}
    payload = Column(JSONType, default=dict)

    # In-app notification created by the first attempt; retries reuse it.
    notification_id = Column(Integer, ForeignKey('notifications.id', ondelete='SET NULL'), nullable=True)

    # Claim bookkeeping for concurrent processors
    claimed_by = Column(Text, nullable=True)
    claimed_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_notification_queue_due', 'status', 'scheduled_at'),
        Index('idx_notification_queue_next_attempt', 'status', 'next_attempt_at'),
    )

    @property
    def variables(self) -> dict:
        return (self.payload or {}).get('variables') or {}

    @property
    def options(self) -> dict:
        return (self.payload or {}).get('options') or {}
