#!/usr/bin/env python3
"""
Notification Service

Orchestrates one dispatch event end to end:

    validate payload -> preferences -> channel selection -> rate limit
    -> in-app Notification row -> per-channel dispatch

plus the surrounding operations the application needs: multi-recipient
sends, enqueueing deferred sends, inbox read state, delivery statistics
and provider callbacks.

Usage:
    from notification.service import NotificationService

    service = NotificationService(session_factory, registry, rate_limiter, config)
    result = service.send(42, 'booking_accepted', {'booking_id': 7})
    if result.outcome == DispatchOutcome.NO_CHANNELS:
        ...
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Iterable, Callable

from sqlalchemy.orm import sessionmaker

from core.config_loader import NotificationConfig
from database.models import utcnow
from database.uow import notification_uow
from notification.catalog import Channel, Priority
from notification.channels import ChannelRegistry
from notification.creator import NotificationCreator
from notification.delivery_log import DeliveryLogger
from notification.dispatcher import Dispatcher
from notification.exceptions import PayloadValidationError
from notification.payloads import validate_payload
from notification.preferences import PreferenceResolver
from notification.rate_limiter import RateLimiter
from notification.results import ChannelResult, DispatchOutcome, DispatchResult
from notification.selector import ChannelSelector
from notification.templates import TemplateCatalog

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Main notification service.

    Holds no database session: every operation opens its own unit of work
    through `session_factory`, so one service instance can be shared by
    request handlers and queue workers.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker],
        registry: ChannelRegistry,
        rate_limiter: Optional[RateLimiter] = None,
        config: Optional[NotificationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize notification service.

        Args:
            session_factory: sessionmaker for units of work (None = module default)
            registry: Channel adapters
            rate_limiter: Per-user admission limiter (None = unlimited)
            config: Notification configuration
            clock: Returns the current UTC time (injected in tests)
        """
        self.session_factory = session_factory
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.config = config or NotificationConfig()
        self._clock = clock or utcnow

        self.resolver = PreferenceResolver(self.config.preference_defaults)
        self.selector = ChannelSelector(self.resolver)
        self.catalog = TemplateCatalog(self.config.templates)
        self.creator = NotificationCreator(self.catalog)
        self.dispatcher = Dispatcher(self.registry, self.catalog, self.selector, self.config.dispatch)

    def now(self) -> datetime:
        return self._clock()

    def _uow(self):
        return notification_uow(self.session_factory)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def send(
        self,
        user_id: int,
        type: str,
        data: Optional[Dict[str, Any]] = None,
        priority=Priority.NORMAL,
        channels: Optional[Iterable] = None,
        language: Optional[str] = None,
        expires_in_hours: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """
        Dispatch one event to every channel the user's preferences allow.

        Args:
            user_id: Recipient user
            type: Notification type, e.g. 'booking_accepted'
            data: Payload; validated against the type's schema and used as template variables
            priority: 'normal', 'high' or 'critical' (critical ignores quiet hours)
            channels: Restrict selection to these channels
            language: Override the user's language for templates
            expires_in_hours: Expiry of the in-app notification
            now: Current time (defaults to the service clock)

        Returns:
            DispatchResult; never raises for per-channel failures

        Raises:
            ValueError: unknown priority or channel name
            RateLimiterUnavailable: shared limiter down and no local fallback
        """
        now = now or self.now()
        priority = Priority.parse(priority)
        requested = [Channel.parse(c) for c in channels] if channels is not None else None

        try:
            payload = validate_payload(type, data)
        except PayloadValidationError as e:
            logger.warning(f"Rejected {type} for user {user_id}: {e}")
            return DispatchResult(user_id, type, DispatchOutcome.INVALID_PAYLOAD, error=str(e))

        with self._uow() as store:
            user = store.users.get_by_id(user_id)
            if user is None or not user.is_active:
                logger.warning(f"Cannot notify user {user_id}: not found or inactive")
                return DispatchResult(user_id, type, DispatchOutcome.USER_NOT_FOUND, error="user not found")

            prefs = self.resolver.get_or_create(store.preferences, user_id)
            selected = self.selector.select(type, priority, prefs, requested, now)
            if not selected:
                logger.info(f"No channel available for {type} to user {user_id}")
                return DispatchResult(user_id, type, DispatchOutcome.NO_CHANNELS, error="no channel available")

            # Only dispatches that will reach a channel consume rate-limit capacity
            if self.rate_limiter is not None and not self.rate_limiter.admit(user_id, now):
                logger.info(f"Dispatch of {type} to user {user_id} rate limited")
                return DispatchResult(user_id, type, DispatchOutcome.RATE_LIMITED, error="rate limited")

            language = language or prefs.language or user.language

            notification = self.creator.create(
                store.notifications,
                store.templates,
                user_id=user_id,
                type=type,
                data=payload,
                priority=priority,
                language=language,
                expires_in_hours=expires_in_hours,
                now=now,
            )
            notification_id = notification.id

        results = self._dispatch_channels(notification_id, user_id, selected, payload, language, now)
        result = DispatchResult(
            user_id=user_id,
            type=type,
            outcome=DispatchResult.summarize(results),
            notification_id=notification_id,
            channels=results,
        )
        logger.info(
            f"Dispatched {type} to user {user_id}: {result.outcome.value} "
            f"(sent: {', '.join(result.channels_sent) or 'none'})"
        )
        return result

    def _dispatch_channels(
        self,
        notification_id: int,
        user_id: int,
        channels: List[Channel],
        payload: Dict[str, Any],
        language: Optional[str],
        now: datetime,
    ) -> List[ChannelResult]:
        def run(channel: Channel) -> ChannelResult:
            return self._run_channel(notification_id, user_id, channel, payload, language, now)

        if not self.config.dispatch.parallel_channels or len(channels) == 1:
            return [run(channel) for channel in channels]

        workers = min(self.config.dispatch.max_channel_workers, len(channels))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="channel") as executor:
            return list(executor.map(run, channels))

    def _run_channel(
        self,
        notification_id: int,
        user_id: int,
        channel: Channel,
        payload: Dict[str, Any],
        language: Optional[str],
        now: datetime,
    ) -> ChannelResult:
        # Own unit of work per channel: a broken transaction stays with its channel
        try:
            with self._uow() as store:
                notification = store.notifications.get_by_id(notification_id)
                user = store.users.get_by_id(user_id)
                prefs = self.resolver.get_or_create(store.preferences, user_id)
                return self.dispatcher.dispatch_channel(
                    store, notification, user, prefs, channel, payload, language, now
                )
        except Exception as e:
            logger.error(f"{channel.value} dispatch for notification {notification_id} aborted: {e}")
            return ChannelResult(channel=channel.value, status="failed", error=str(e))

    def send_to_multiple(
        self,
        user_ids: Iterable[int],
        type: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs,
    ) -> Dict[int, DispatchResult]:
        """Send the same event to several users; one user's failure does not stop the rest."""
        results = {}
        for user_id in user_ids:
            try:
                results[user_id] = self.send(user_id, type, data, **kwargs)
            except Exception as e:
                logger.error(f"Failed to notify user {user_id} of {type}: {e}")
                results[user_id] = DispatchResult(user_id, type, DispatchOutcome.FAILED, error=str(e))
        return results

    def deliver_queued(
        self,
        user_id: int,
        type: str,
        channel,
        data: Optional[Dict[str, Any]],
        priority=Priority.NORMAL,
        notification_id: Optional[int] = None,
        language: Optional[str] = None,
        expires_in_hours: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """
        Run the pipeline for one queue item's single channel.

        The first attempt (no `notification_id`) passes the rate limiter and
        creates the Notification row; retries reuse that row and are not
        rate limited again.
        """
        now = now or self.now()
        channel = Channel.parse(channel)
        priority = Priority.parse(priority)

        try:
            payload = validate_payload(type, data)
        except PayloadValidationError as e:
            return DispatchResult(user_id, type, DispatchOutcome.INVALID_PAYLOAD,
                                  notification_id=notification_id, error=str(e))

        with self._uow() as store:
            user = store.users.get_by_id(user_id)
            if user is None or not user.is_active:
                return DispatchResult(user_id, type, DispatchOutcome.USER_NOT_FOUND,
                                      notification_id=notification_id, error="user not found")

            prefs = self.resolver.get_or_create(store.preferences, user_id)
            if not self.selector.is_eligible(type, channel, prefs):
                return DispatchResult(
                    user_id, type, DispatchOutcome.NO_CHANNELS, notification_id=notification_id,
                    error=f"{channel.value} not allowed by preferences",
                )

            if notification_id is None and self.rate_limiter is not None \
                    and not self.rate_limiter.admit(user_id, now):
                return DispatchResult(user_id, type, DispatchOutcome.RATE_LIMITED, error="rate limited")

            language = language or prefs.language or user.language
            if notification_id is None:
                notification = self.creator.create(
                    store.notifications,
                    store.templates,
                    user_id=user_id,
                    type=type,
                    data=payload,
                    priority=priority,
                    language=language,
                    expires_in_hours=expires_in_hours,
                    now=now,
                )
                notification_id = notification.id

        channel_result = self._run_channel(notification_id, user_id, channel, payload, language, now)
        return DispatchResult(
            user_id=user_id,
            type=type,
            outcome=DispatchResult.summarize([channel_result]),
            notification_id=notification_id,
            channels=[channel_result],
            error=channel_result.error,
        )

    def enqueue(
        self,
        user_id: int,
        type: str,
        variables: Optional[Dict[str, Any]] = None,
        channel='push',
        priority=Priority.NORMAL,
        delay_minutes: Optional[float] = None,
        expires_in_hours: Optional[float] = None,
        max_attempts: Optional[int] = None,
        language: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Store a deferred single-channel send for the queue processor.

        Returns:
            Queue item id

        Raises:
            PayloadValidationError: variables do not match the type's schema
            ValueError: unknown channel or priority
        """
        now = now or self.now()
        channel = Channel.parse(channel)
        priority = Priority.parse(priority)
        variables = validate_payload(type, variables)

        scheduled_at = now + timedelta(minutes=delay_minutes) if delay_minutes else now
        expires_at = now + timedelta(hours=expires_in_hours) if expires_in_hours else None
        options = {'language': language, 'expires_in_hours': expires_in_hours}

        with self._uow() as store:
            item = store.queue.enqueue(
                user_id=user_id,
                type=type,
                channel=channel.value,
                payload={'variables': variables, 'options': {k: v for k, v in options.items() if v is not None}},
                priority=priority.value,
                scheduled_at=scheduled_at,
                expires_at=expires_at,
                max_attempts=max_attempts or self.config.queue.default_max_attempts,
            )
            item_id = item.id

        logger.info(f"Queued {type} via {channel.value} for user {user_id} (item {item_id}, at {scheduled_at.isoformat()})")
        return item_id

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def list_notifications(
        self,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        with self._uow() as store:
            rows = store.notifications.list_for_user(
                user_id, unread_only=unread_only, limit=limit, offset=offset, now=self.now()
            )
            return [row.to_dict() for row in rows]

    def unread_count(self, user_id: int) -> int:
        with self._uow() as store:
            return store.notifications.count_unread(user_id, now=self.now())

    def mark_as_read(self, user_id: int, notification_id: int) -> bool:
        with self._uow() as store:
            notification = store.notifications.get_by_id(notification_id)
            if notification is None or notification.user_id != user_id:
                return False
            notification.mark_as_read(self.now())
            return True

    def mark_as_unread(self, user_id: int, notification_id: int) -> bool:
        with self._uow() as store:
            notification = store.notifications.get_by_id(notification_id)
            if notification is None or notification.user_id != user_id:
                return False
            notification.mark_as_unread()
            return True

    def mark_all_as_read(self, user_id: int) -> int:
        with self._uow() as store:
            return store.notifications.mark_all_read(user_id, now=self.now())

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preferences(self, user_id: int) -> Dict[str, Any]:
        with self._uow() as store:
            return self.resolver.get_or_create(store.preferences, user_id).to_dict()

    def update_preferences(self, user_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Raises:
            ValueError: unknown field, bad quiet-hours time or timezone
        """
        with self._uow() as store:
            return self.resolver.update(store.preferences, user_id, changes).to_dict()

    # ------------------------------------------------------------------
    # Delivery tracking
    # ------------------------------------------------------------------

    def record_delivery_event(self, log_id: int, event: str) -> Dict[str, Any]:
        """
        Apply a provider callback to a delivery log.

        Args:
            log_id: NotificationLog id
            event: 'delivered' or 'opened'

        Raises:
            LookupError, ValueError, InvalidStatusTransition
        """
        with self._uow() as store:
            log = DeliveryLogger(store.logs).record_event(log_id, event, now=self.now())
            return {'id': log.id, 'channel': log.channel, 'status': log.status}

    def get_stats(self, days: int = 30) -> Dict[str, Any]:
        """Per-channel delivery counts over the last `days` days, plus totals."""
        with self._uow() as store:
            channels = store.logs.stats_by_channel(days=days, now=self.now())

        totals = {key: 0 for key in ('total', 'sent', 'delivered', 'opened', 'failed', 'cancelled')}
        for row in channels:
            for key in totals:
                totals[key] += row.get(key, 0) or 0
        return {'period_days': days, 'channels': channels, 'totals': totals}
