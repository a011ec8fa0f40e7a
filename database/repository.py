from sqlalchemy.orm import Session

from database.repositories import (
    UserRepository,
    PreferenceRepository,
    NotificationRepository,
    DeliveryLogRepository,
    QueueRepository,
    TemplateRepository,
)


class NotificationStore:
    """
    All notification repositories bound to one Session.

    Passed to the routing core per unit of work; never shared across threads.
    """

    def __init__(self, db: Session):
        self.db = db
        self.users = UserRepository(db)
        self.preferences = PreferenceRepository(db)
        self.notifications = NotificationRepository(db)
        self.logs = DeliveryLogRepository(db)
        self.queue = QueueRepository(db)
        self.templates = TemplateRepository(db)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
