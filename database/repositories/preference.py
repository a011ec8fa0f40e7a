import logging
from datetime import time
from typing import Optional, Dict, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from database.models import UserNotificationPreference, CATEGORY_CHANNEL_FIELDS
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class PreferenceRepository(BaseRepository):
    def get_by_user_id(self, user_id: int) -> Optional[UserNotificationPreference]:
        stmt = select(UserNotificationPreference).where(
            UserNotificationPreference.user_id == user_id
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create(self, user_id: int, values: Dict[str, Any]) -> UserNotificationPreference:
        """
        Insert a preference row. If a concurrent writer created one first,
        the existing row is returned instead. Call before any other pending
        work in the session: the losing insert rolls the session back.
        """
        preference = UserNotificationPreference(user_id=user_id, **values)
        self.db.add(preference)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Preferences for user {user_id} created concurrently, reloading")
            existing = self.get_by_user_id(user_id)
            if existing is None:
                raise
            return existing
        return preference

    def update(self, user_id: int, changes: Dict[str, Any]) -> UserNotificationPreference:
        preference = self.get_by_user_id(user_id)
        if preference is None:
            raise LookupError(f"No notification preferences for user {user_id}")

        allowed = {
            'push_enabled', 'email_enabled', 'sms_enabled', 'in_app_enabled',
            'marketing_enabled', 'quiet_hours_enabled', 'quiet_hours_start',
            'quiet_hours_end', 'timezone', 'language',
        } | set(CATEGORY_CHANNEL_FIELDS)

        for key, value in changes.items():
            if key not in allowed:
                raise ValueError(f"Unknown preference field: {key}")
            if key in ('quiet_hours_start', 'quiet_hours_end') and isinstance(value, str):
                value = parse_time_of_day(value)
            setattr(preference, key, value)

        self.db.flush()
        return preference


def parse_time_of_day(value: str) -> time:
    """Parse "HH:MM" or "HH:MM:SS" into a time."""
    parts = value.strip().split(':')
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time format: {value}. Use HH:MM")
    try:
        numbers = [int(p) for p in parts]
        return time(*numbers)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid time format: {value}. Use HH:MM") from None
