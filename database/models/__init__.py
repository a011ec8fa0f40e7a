from .base import Base, JSONType, UTCDateTime, utcnow
from .user import User
from .preference import UserNotificationPreference, CATEGORY_CHANNEL_FIELDS
from .notification import Notification, NotificationLog, DeliveryStatus, DELIVERY_TRANSITIONS
from .queue import NotificationQueueItem, QueueStatus
from .template import NotificationTemplate

__all__ = [
    'Base',
    'JSONType',
    'UTCDateTime',
    'utcnow',
    'User',
    'UserNotificationPreference',
    'CATEGORY_CHANNEL_FIELDS',
    'Notification',
    'NotificationLog',
    'DeliveryStatus',
    'DELIVERY_TRANSITIONS',
    'NotificationQueueItem',
    'QueueStatus',
    'NotificationTemplate',
]
