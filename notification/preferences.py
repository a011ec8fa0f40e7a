"""
Preference resolution.

Preferences are read fresh from storage on every dispatch so an opt-out
takes effect on the very next event.
"""

import logging
from datetime import datetime, time, timezone
from typing import Optional, Dict, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.config_loader import PreferenceDefaults
from database.models import UserNotificationPreference
from database.repositories import PreferenceRepository
from notification.catalog import Channel, category_for

logger = logging.getLogger(__name__)


def _zone(tz_name: Optional[str]):
    if not tz_name:
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{tz_name}', using UTC")
        return timezone.utc


def in_window(local: time, start: time, end: time) -> bool:
    """True if `local` falls in [start, end), wrapping past midnight when start > end."""
    if start == end:
        return False
    if start < end:
        return start <= local < end
    return local >= start or local < end


class PreferenceResolver:
    def __init__(self, defaults: Optional[PreferenceDefaults] = None):
        self.defaults = defaults or PreferenceDefaults()

    def default_values(self) -> Dict[str, Any]:
        return self.defaults.model_dump()

    def get_or_create(self, repo: PreferenceRepository, user_id: int) -> UserNotificationPreference:
        preference = repo.get_by_user_id(user_id)
        if preference is not None:
            return preference
        logger.info(f"Creating default notification preferences for user {user_id}")
        return repo.create(user_id, self.default_values())

    def update(self, repo: PreferenceRepository, user_id: int, changes: Dict[str, Any]) -> UserNotificationPreference:
        """
        Apply partial changes, creating the row first if needed.

        Raises:
            ValueError: unknown field, bad "HH:MM" value or unknown timezone
        """
        tz_name = changes.get('timezone')
        if tz_name is not None:
            try:
                ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone: {tz_name}") from None
        self.get_or_create(repo, user_id)
        return repo.update(user_id, changes)

    def can_receive(self, type: str, channel, prefs: UserNotificationPreference) -> bool:
        channel = Channel.parse(channel)
        if not getattr(prefs, f"{channel.value}_enabled", False):
            return False
        category = category_for(type)
        if category is None:
            return True
        flag = prefs.category_flag(category, channel.value)
        # No column or NULL value means "allowed"
        return flag is None or bool(flag)

    def is_in_quiet_hours(self, prefs: UserNotificationPreference, now_utc: Optional[datetime] = None) -> bool:
        if not prefs.quiet_hours_enabled:
            return False
        if prefs.quiet_hours_start is None or prefs.quiet_hours_end is None:
            return False
        now_utc = now_utc or datetime.now(timezone.utc)
        if now_utc.tzinfo is None:
            now_utc = now_utc.replace(tzinfo=timezone.utc)
        local = now_utc.astimezone(_zone(prefs.timezone)).time().replace(tzinfo=None)
        return in_window(local, prefs.quiet_hours_start, prefs.quiet_hours_end)
