"""
Notification type catalog.

Channels and priorities are closed sets; notification types are open
strings grouped into preference categories. Types without a category are
never blocked by per-category preference flags.
"""

from enum import Enum
from typing import Optional


class Channel(str, Enum):
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"
    IN_APP = "in_app"

    @classmethod
    def parse(cls, value) -> "Channel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown channel: {value}") from None


class Priority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value) -> "Priority":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown priority: {value}") from None


# Selection order; see ChannelSelector.
CHANNEL_ORDER = (Channel.IN_APP, Channel.PUSH, Channel.EMAIL, Channel.SMS)

# Channels still used for non-critical notifications during quiet hours.
QUIET_HOURS_CHANNELS = frozenset({Channel.EMAIL, Channel.IN_APP})

TYPE_CATEGORIES = {
    # Trips
    'trip_created': 'trip_updates',
    'trip_updated': 'trip_updates',
    'trip_cancelled': 'trip_updates',
    'trip_reminder': 'trip_updates',
    'journey_started': 'trip_updates',

    # Bookings
    'booking_request': 'booking_updates',
    'new_booking_request': 'booking_updates',
    'booking_accepted': 'booking_updates',
    'booking_rejected': 'booking_updates',
    'booking_cancelled': 'booking_updates',
    'booking_confirmed': 'booking_updates',

    # Deliveries (no per-channel preference columns)
    'delivery_code_generated': 'delivery_updates',
    'delivery_code_regenerated': 'delivery_updates',
    'delivery_confirmed': 'delivery_updates',
    'pickup_code': 'delivery_updates',
    'delivery_code': 'delivery_updates',

    # Payments
    'payment_received': 'payment_updates',
    'payment_confirmed': 'payment_updates',
    'payment_failed': 'payment_updates',
    'payment_refunded': 'payment_updates',
    'payout_processed': 'payment_updates',

    # Security
    'login_from_new_device': 'security_alerts',
    'password_changed': 'security_alerts',
    'account_suspended': 'security_alerts',
    'suspicious_activity': 'security_alerts',
    'security_alert': 'security_alerts',
    'verification_code': 'security_alerts',
}

# Consequential events that justify an email.
EMAIL_TYPES = frozenset({
    'booking_accepted',
    'booking_rejected',
    'booking_cancelled',
    'payment_received',
    'payment_confirmed',
    'payment_failed',
    'payment_refunded',
    'payout_processed',
    'trip_cancelled',
    'security_alert',
    'account_suspended',
    'login_from_new_device',
    'password_changed',
    'suspicious_activity',
})

# Codes and critical alerts; the only types ever sent by SMS.
SMS_TYPES = frozenset({
    'pickup_code',
    'delivery_code',
    'verification_code',
    'security_alert',
})


def category_for(type: str) -> Optional[str]:
    return TYPE_CATEGORIES.get(type)


def allows_email(type: str) -> bool:
    return type in EMAIL_TYPES


def allows_sms(type: str) -> bool:
    return type in SMS_TYPES
