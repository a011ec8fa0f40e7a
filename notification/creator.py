import logging
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Tuple

from database.models import Notification, utcnow
from database.repositories import NotificationRepository, TemplateRepository
from notification.catalog import Channel, Priority
from notification.exceptions import TemplateMissing
from notification.templates import TemplateCatalog, GENERIC_TITLE, GENERIC_MESSAGE

logger = logging.getLogger(__name__)


class NotificationCreator:
    """
    Creates the durable in-app Notification row for an event.

    Exactly one row per dispatch, written before any channel is attempted
    and regardless of how the channels fare.
    """

    def __init__(self, catalog: TemplateCatalog):
        self.catalog = catalog

    def _content(self, templates: TemplateRepository, type: str, language: Optional[str], data: Dict[str, Any]) -> Tuple[str, str]:
        # In-app copy first, then push copy, before the generic text
        for channel in (Channel.IN_APP, Channel.PUSH):
            try:
                template = self.catalog.resolve(templates, type, channel, language)
            except TemplateMissing:
                continue
            if template.source == 'generic':
                continue
            rendered = self.catalog.render(template, data)
            return rendered['title'] or GENERIC_TITLE, rendered['content'] or GENERIC_MESSAGE
        return GENERIC_TITLE, GENERIC_MESSAGE

    def create(
        self,
        notifications: NotificationRepository,
        templates: TemplateRepository,
        user_id: int,
        type: str,
        data: Optional[Dict[str, Any]] = None,
        priority=Priority.NORMAL,
        language: Optional[str] = None,
        expires_in_hours: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Notification:
        now = now or utcnow()
        data = data or {}
        title, message = self._content(templates, type, language, data)
        expires_at = now + timedelta(hours=expires_in_hours) if expires_in_hours else None

        notification = notifications.create(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data,
            priority=Priority.parse(priority).value,
            expires_at=expires_at,
            created_at=now,
        )
        logger.debug(f"Created notification {notification.id} ({type}) for user {user_id}")
        return notification
