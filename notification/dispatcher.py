"""
Per-channel dispatch.

Drives one channel attempt end to end:

    log(pending) -> [quiet hours: cancelled]
                 -> processing -> render -> recipient -> adapter.send
                 -> sent | failed

Every failure (template, recipient, adapter exception or timeout) is
caught here and turned into a failed ChannelResult, so one channel can
never stop the others.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime
from typing import Dict, Any, Optional

from core.config_loader import DispatchConfig
from database.models import Notification, NotificationLog, User, UserNotificationPreference, DeliveryStatus
from database.repository import NotificationStore
from notification.catalog import Channel
from notification.channels import ChannelAdapter, ChannelRegistry, SendResult, mask_recipient
from notification.delivery_log import DeliveryLogger
from notification.exceptions import RecipientUnavailable
from notification.results import ChannelResult
from notification.selector import ChannelSelector
from notification.templates import TemplateCatalog

logger = logging.getLogger(__name__)

QUIET_HOURS_REASON = "quiet hours"


class Dispatcher:
    def __init__(
        self,
        registry: ChannelRegistry,
        catalog: TemplateCatalog,
        selector: ChannelSelector,
        config: Optional[DispatchConfig] = None,
    ):
        self.registry = registry
        self.catalog = catalog
        self.selector = selector
        self.config = config or DispatchConfig()

    def _send(self, adapter: ChannelAdapter, user: User, message: Dict[str, Any], data: Dict[str, Any]) -> SendResult:
        """Call the adapter with a timeout; on timeout the adapter's stop_event is set."""
        timeout = self.config.send_timeout_seconds
        stop_event = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"send-{adapter.channel.value}")
        try:
            future = executor.submit(adapter.send, user, message, data, stop_event)
            try:
                result = future.result(timeout=timeout)
            except FutureTimeout:
                stop_event.set()
                future.cancel()
                return SendResult(success=False, error=f"send timed out after {timeout}s")
        finally:
            executor.shutdown(wait=False)

        if not isinstance(result, SendResult):
            return SendResult(success=False, error=f"adapter returned {type(result).__name__}, expected SendResult")
        return result

    def _fail(self, log_writer: DeliveryLogger, log: Optional[NotificationLog], channel: str, error: str, now: datetime) -> ChannelResult:
        if log is not None and log.can_transition_to(DeliveryStatus.FAILED):
            try:
                log_writer.transition(log, DeliveryStatus.FAILED, now=now, error=error)
            except Exception as e:
                logger.error(f"Could not record failure on log {log.id}: {e}")
        return ChannelResult(
            channel=channel,
            status=DeliveryStatus.FAILED.value,
            log_id=log.id if log is not None else None,
            recipient=log.recipient if log is not None else None,
            error=error,
        )

    def dispatch_channel(
        self,
        store: NotificationStore,
        notification: Notification,
        user: User,
        prefs: UserNotificationPreference,
        channel,
        variables: Dict[str, Any],
        language: Optional[str],
        now: datetime,
    ) -> ChannelResult:
        channel = Channel.parse(channel)
        log_writer = DeliveryLogger(store.logs)
        log = None
        try:
            log = log_writer.open(
                notification_id=notification.id,
                user_id=user.id,
                type=notification.type,
                channel=channel.value,
                now=now,
            )

            if self.selector.quiet_hours_suppresses(channel, notification.priority, prefs, now):
                log_writer.transition(log, DeliveryStatus.CANCELLED, now=now, error=QUIET_HOURS_REASON)
                logger.info(f"{channel.value} for notification {notification.id} cancelled: quiet hours")
                return ChannelResult(
                    channel=channel.value,
                    status=DeliveryStatus.CANCELLED.value,
                    log_id=log.id,
                    error=QUIET_HOURS_REASON,
                )

            log_writer.transition(log, DeliveryStatus.PROCESSING, now=now)
            adapter = self.registry.get(channel)

            template = self.catalog.resolve(store.templates, notification.type, channel, language)
            message = self.catalog.render(template, variables)
            log.title = message.get('subject') or message.get('title')
            log.message = message.get('content')

            recipient = adapter.get_recipient(user)
            if not recipient:
                raise RecipientUnavailable(channel.value, user.id)
            log_writer.set_recipient(log, recipient)

            data = dict(variables)
            data['notification_id'] = notification.id
            result = self._send(adapter, user, message, data)

            if not result.success:
                error = result.error or "provider reported failure"
                logger.error(
                    f"{channel.value} to {mask_recipient(channel.value, recipient)} failed "
                    f"(notification {notification.id}): {error}"
                )
                return self._fail(log_writer, log, channel.value, error, now)

            log_writer.transition(
                log, DeliveryStatus.SENT, now=now, provider_message_id=result.provider_message_id
            )
            logger.info(f"{channel.value} sent to {mask_recipient(channel.value, recipient)} (notification {notification.id})")
            return ChannelResult(
                channel=channel.value,
                status=DeliveryStatus.SENT.value,
                log_id=log.id,
                recipient=recipient,
                provider_message_id=result.provider_message_id,
            )

        except Exception as e:
            logger.error(f"{channel.value} dispatch failed for notification {notification.id}: {e}")
            return self._fail(log_writer, log, channel.value, str(e), now)
