from typing import List, Optional

from sqlalchemy import select

from database.models import NotificationTemplate
from database.repositories.base import BaseRepository


class TemplateRepository(BaseRepository):
    def find(self, type: str, channel: str, language: str) -> Optional[NotificationTemplate]:
        stmt = select(NotificationTemplate).where(
            NotificationTemplate.type == type,
            NotificationTemplate.channel == channel,
            NotificationTemplate.language == language,
            NotificationTemplate.is_active.is_(True),
        ).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, template: NotificationTemplate) -> NotificationTemplate:
        self.db.add(template)
        self.db.flush()
        return template

    def available_languages(self) -> List[str]:
        stmt = select(NotificationTemplate.language).distinct().order_by(NotificationTemplate.language)
        return list(self.db.execute(stmt).scalars().all())
