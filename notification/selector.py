import logging
from datetime import datetime
from typing import Iterable, List, Optional

from database.models import UserNotificationPreference
from notification.catalog import (
    Channel,
    Priority,
    CHANNEL_ORDER,
    QUIET_HOURS_CHANNELS,
    allows_email,
    allows_sms,
)
from notification.preferences import PreferenceResolver

logger = logging.getLogger(__name__)


class ChannelSelector:
    """
    Computes the ordered channel set for one event.

    Order is always in_app, push, email, sms. An empty result means the
    event has no channel available and the caller must report it.
    """

    def __init__(self, resolver: PreferenceResolver):
        self.resolver = resolver

    def is_eligible(self, type: str, channel, prefs: UserNotificationPreference) -> bool:
        """Preference and type eligibility for one channel, ignoring quiet hours."""
        channel = Channel.parse(channel)
        if channel == Channel.IN_APP:
            return bool(prefs.in_app_enabled)
        if channel == Channel.EMAIL and not allows_email(type):
            return False
        if channel == Channel.SMS and not allows_sms(type):
            return False
        return self.resolver.can_receive(type, channel, prefs)

    def select(
        self,
        type: str,
        priority,
        prefs: UserNotificationPreference,
        requested_channels: Optional[Iterable] = None,
        now: Optional[datetime] = None,
    ) -> List[Channel]:
        priority = Priority.parse(priority)
        selected = [c for c in CHANNEL_ORDER if self.is_eligible(type, c, prefs)]

        if priority != Priority.CRITICAL and self.resolver.is_in_quiet_hours(prefs, now):
            suppressed = [c.value for c in selected if c not in QUIET_HOURS_CHANNELS]
            if suppressed:
                logger.info(f"Quiet hours for user {prefs.user_id}: suppressing {', '.join(suppressed)}")
            selected = [c for c in selected if c in QUIET_HOURS_CHANNELS]

        if requested_channels is not None:
            requested = {Channel.parse(c) for c in requested_channels}
            selected = [c for c in selected if c in requested]

        return selected

    def quiet_hours_suppresses(
        self,
        channel,
        priority,
        prefs: UserNotificationPreference,
        now: Optional[datetime] = None,
    ) -> bool:
        """True if quiet hours block `channel` for a notification of `priority` right now."""
        if Priority.parse(priority) == Priority.CRITICAL:
            return False
        if Channel.parse(channel) in QUIET_HOURS_CHANNELS:
            return False
        return self.resolver.is_in_quiet_hours(prefs, now)
