from datetime import time

from sqlalchemy import Column, Integer, Text, Boolean, Time, ForeignKey
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow

# Categories with per-channel opt-in columns. A category/channel pair with no
# column (e.g. anything over SMS) is treated as allowed.
CATEGORY_CHANNEL_FIELDS = (
    'trip_updates_push',
    'trip_updates_email',
    'booking_updates_push',
    'booking_updates_email',
    'payment_updates_push',
    'payment_updates_email',
    'security_alerts_push',
    'security_alerts_email',
)


class UserNotificationPreference(Base):
    """
    One row per user: global channel toggles, per-category overrides,
    quiet hours and locale. Created lazily with defaults on first dispatch.
    """
    __tablename__ = 'user_notification_preferences'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True, index=True)

    # Global channel toggles
    push_enabled = Column(Boolean, nullable=False, default=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    sms_enabled = Column(Boolean, nullable=False, default=False)
    in_app_enabled = Column(Boolean, nullable=False, default=True)
    marketing_enabled = Column(Boolean, nullable=False, default=False)

    # Per-category overrides (NULL means "not set" and is treated as allowed)
    trip_updates_push = Column(Boolean, nullable=True, default=True)
    trip_updates_email = Column(Boolean, nullable=True, default=True)
    booking_updates_push = Column(Boolean, nullable=True, default=True)
    booking_updates_email = Column(Boolean, nullable=True, default=True)
    payment_updates_push = Column(Boolean, nullable=True, default=True)
    payment_updates_email = Column(Boolean, nullable=True, default=True)
    security_alerts_push = Column(Boolean, nullable=True, default=True)
    security_alerts_email = Column(Boolean, nullable=True, default=True)

    # Quiet hours, local time of day in `timezone`
    quiet_hours_enabled = Column(Boolean, nullable=False, default=False)
    quiet_hours_start = Column(Time, nullable=True, default=time(22, 0))
    quiet_hours_end = Column(Time, nullable=True, default=time(8, 0))

    timezone = Column(Text, nullable=False, default='UTC')
    language = Column(Text, nullable=False, default='en')

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User")

    def category_flag(self, category: str, channel: str):
        """Return the `{category}_{channel}` override, or None when no such column exists."""
        field = f"{category}_{channel}"
        if field not in CATEGORY_CHANNEL_FIELDS:
            return None
        return getattr(self, field)

    def to_dict(self) -> dict:
        return {
            'user_id': self.user_id,
            'general': {
                'push_enabled': self.push_enabled,
                'email_enabled': self.email_enabled,
                'sms_enabled': self.sms_enabled,
                'in_app_enabled': self.in_app_enabled,
                'marketing_enabled': self.marketing_enabled,
                'language': self.language,
                'timezone': self.timezone,
            },
            'quiet_hours': {
                'enabled': self.quiet_hours_enabled,
                'start': self.quiet_hours_start.strftime('%H:%M') if self.quiet_hours_start else None,
                'end': self.quiet_hours_end.strftime('%H:%M') if self.quiet_hours_end else None,
            },
            'categories': self._categories_dict(),
        }

    def _categories_dict(self) -> dict:
        categories = {}
        for field in CATEGORY_CHANNEL_FIELDS:
            category, channel = field.rsplit('_', 1)
            categories.setdefault(category, {})[channel] = getattr(self, field)
        return categories
