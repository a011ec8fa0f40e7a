import contextlib
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from database.database import SessionLocal, get_engine
from database.repository import NotificationStore

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def notification_uow(session_factory: Optional[sessionmaker] = None):
    """Per-unit-of-work transaction scope.

    Yields a NotificationStore bound to a fresh Session. Commits on success,
    rolls back on exception, always closes.

    Usage:
        with notification_uow(factory) as store:
            prefs = store.preferences.get_by_user_id(user_id)
            # perform operations...
        # commit happens automatically on successful exit
    """
    if session_factory is None:
        get_engine()
        session_factory = SessionLocal
    session = session_factory()
    try:
        store = NotificationStore(session)
        yield store
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
