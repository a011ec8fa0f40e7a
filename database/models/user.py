from sqlalchemy import Column, Integer, Text, Boolean, Index

from .base import Base, UTCDateTime, utcnow


class User(Base):
    """
    Minimal view of a platform user.

    The account itself is owned by the surrounding application; the
    notification core only reads contact points, timezone and language.
    """
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    push_token = Column(Text, nullable=True)  # FCM/APNs device token
    display_name = Column(Text)
    timezone = Column(Text, nullable=True)
    language = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_users_email', 'email'),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id}>"
