from dataclasses import dataclass
from typing import Optional

from redis import Redis
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from core.config_loader import AppConfig
from database.database import configure, SessionLocal
from notification.channels import ChannelRegistry, build_default_registry
from notification.queue_processor import QueueProcessor
from notification.rate_limiter import RateLimiter, build_rate_limiter
from notification.service import NotificationService


@dataclass
class AppContext:
    """Application context container that holds all wired dependencies.

    This eliminates duplicate wiring code and provides a single source
    of truth for service instantiation. DB access should be obtained
    via notification_uow() inside each operation.
    """
    config: AppConfig
    engine: Engine
    session_factory: sessionmaker
    registry: ChannelRegistry
    rate_limiter: Optional[RateLimiter]
    notification_service: NotificationService
    queue_processor: QueueProcessor

    @classmethod
    def build(cls, config: AppConfig, redis_conn: Optional[Redis] = None) -> "AppContext":
        """Build an AppContext from config.

        Args:
            config: Loaded application configuration
            redis_conn: Existing Redis connection for the rate limiter (optional)

        Returns:
            Fully wired AppContext instance (no DB session attached)
        """
        engine = configure(config.database.url, echo=config.database.echo)
        notifications = config.notifications

        registry = build_default_registry(notifications)
        rate_limiter = build_rate_limiter(notifications.rate_limit, redis_conn=redis_conn)

        service = NotificationService(
            session_factory=SessionLocal,
            registry=registry,
            rate_limiter=rate_limiter,
            config=notifications,
        )
        processor = QueueProcessor(service, session_factory=SessionLocal, config=notifications.queue)

        return cls(
            config=config,
            engine=engine,
            session_factory=SessionLocal,
            registry=registry,
            rate_limiter=rate_limiter,
            notification_service=service,
            queue_processor=processor,
        )
