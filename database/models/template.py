from sqlalchemy import Column, Integer, Text, Boolean, Index, UniqueConstraint

from .base import Base, JSONType, UTCDateTime, utcnow


class NotificationTemplate(Base):
    """
    Channel-specific copy keyed by (type, channel, language).

    Placeholders use `{{name}}` or `{name}`. Authored outside this package;
    read-only at dispatch time.
    """
    __tablename__ = 'notification_templates'

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(Text, nullable=False)
    channel = Column(Text, nullable=False)
    language = Column(Text, nullable=False)

    title = Column(Text, nullable=False, default='')
    message = Column(Text, nullable=False, default='')
    subject = Column(Text, nullable=True)       # email
    html_content = Column(Text, nullable=True)  # email / in-app rich body

    variables = Column(JSONType, default=list)  # declared required variable names
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('type', 'channel', 'language', name='uq_notification_template_key'),
        Index('idx_notification_templates_lookup', 'type', 'channel', 'language', 'is_active'),
    )
