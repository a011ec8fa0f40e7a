from enum import Enum
from typing import Optional
from datetime import datetime

from sqlalchemy import Column, Integer, Text, ForeignKey, Index
from sqlalchemy.orm import relationship

from .base import Base, JSONType, UTCDateTime, utcnow


class DeliveryStatus(str, Enum):
    """Per-channel delivery status of a NotificationLog row."""
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Forward-only state machine. `delivered`/`opened` arrive via provider callbacks.
DELIVERY_TRANSITIONS = {
    DeliveryStatus.PENDING: {DeliveryStatus.PROCESSING, DeliveryStatus.CANCELLED, DeliveryStatus.FAILED},
    DeliveryStatus.PROCESSING: {DeliveryStatus.SENT, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED},
    DeliveryStatus.SENT: {DeliveryStatus.DELIVERED, DeliveryStatus.OPENED},
    DeliveryStatus.DELIVERED: {DeliveryStatus.OPENED},
    DeliveryStatus.OPENED: set(),
    DeliveryStatus.FAILED: set(),
    DeliveryStatus.CANCELLED: set(),
}


class Notification(Base):
    """
    Durable in-app notification.

    Exactly one row per dispatch event, regardless of how many external
    channels are attempted. Holds history and read state.
    """
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    type = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSONType, default=dict)
    priority = Column(Text, nullable=False, default='normal')

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    read_at = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)

    logs = relationship("NotificationLog", back_populates="notification", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_notifications_user', 'user_id', 'created_at'),
        Index('idx_notifications_unread', 'user_id', 'read_at'),
    )

    def mark_as_read(self, now: Optional[datetime] = None) -> None:
        if self.read_at is None:
            self.read_at = now or utcnow()

    def mark_as_unread(self) -> None:
        self.read_at = None

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'data': self.data or {},
            'priority': self.priority,
            'is_read': self.read_at is not None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'read_at': self.read_at.isoformat() if self.read_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
        }


class NotificationLog(Base):
    """
    Audit row for one channel attempt of a Notification.
    """
    __tablename__ = 'notification_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(Integer, ForeignKey('notifications.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Integer, nullable=False)
    type = Column(Text, nullable=False)
    channel = Column(Text, nullable=False)
    recipient = Column(Text, nullable=True)  # resolved after the log row is opened
    title = Column(Text)
    message = Column(Text)

    status = Column(Text, nullable=False, default=DeliveryStatus.PENDING.value)
    error_message = Column(Text, nullable=True)
    provider_message_id = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
    sent_at = Column(UTCDateTime, nullable=True)
    delivered_at = Column(UTCDateTime, nullable=True)
    opened_at = Column(UTCDateTime, nullable=True)
    failed_at = Column(UTCDateTime, nullable=True)

    notification = relationship("Notification", back_populates="logs")

    __table_args__ = (
        Index('idx_notification_logs_notification', 'notification_id'),
        Index('idx_notification_logs_channel_status', 'channel', 'status'),
        Index('idx_notification_logs_created', 'created_at'),
    )

    @property
    def delivery_status(self) -> DeliveryStatus:
        return DeliveryStatus(self.status)

    def can_transition_to(self, target: DeliveryStatus) -> bool:
        return target in DELIVERY_TRANSITIONS[self.delivery_status]
