"""
Notification Channels

Every delivery surface (push, email, sms, in_app) is served by one adapter
implementing ChannelAdapter. Adapters are looked up through a
ChannelRegistry keyed by the closed Channel enum, so the set of channels
is known up front and custom providers plug in without touching the core.

Usage:
    from notification.channels import ChannelRegistry, build_default_registry

    registry = build_default_registry(config.notifications)
    adapter = registry.get('email')
    result = adapter.send(user, {'subject': 'Hi', 'content': '...'}, {})
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Optional, List
import importlib
import logging
import os
import smtplib
import threading
import uuid
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from notification.catalog import Channel
from notification.exceptions import ChannelNotRegistered

logger = logging.getLogger(__name__)


def _is_dry_run_mode() -> bool:
    """Check if notification channels should run in dry-run (log-only) mode."""
    return os.environ.get('NOTIFICATION_DRY_RUN', '').lower() in ('true', '1', 'yes')


def _mask_email(email: str) -> str:
    """
    Mask email address for safe logging (PII protection).

    Shows only domain, e.g., "***@example.com"
    """
    if '@' not in email:
        return "***"
    local, domain = email.rsplit('@', 1)
    return f"***@{domain}"


def _mask_phone(phone: str) -> str:
    """Keep only the last two digits, e.g. "***42"."""
    digits = [c for c in phone if c.isdigit()]
    if len(digits) < 4:
        return "***"
    return "***" + ''.join(digits[-2:])


def mask_recipient(channel: str, recipient: Optional[str]) -> str:
    if not recipient:
        return "<none>"
    if channel == Channel.EMAIL.value:
        return _mask_email(recipient)
    if channel == Channel.SMS.value:
        return _mask_phone(recipient)
    if channel == Channel.PUSH.value:
        return recipient[:6] + "..."
    return recipient


@dataclass
class SendResult:
    """Outcome of one adapter call."""
    success: bool
    error: Optional[str] = None
    provider_message_id: Optional[str] = None


class ChannelAdapter(ABC):
    """
    Abstract base class for all channel adapters.

    Adapters never raise for provider failures: they return
    SendResult(success=False, error=...). Anything they do raise is caught
    by the dispatcher and recorded as a failed delivery.
    """

    @property
    @abstractmethod
    def channel(self) -> Channel:
        """Return the channel this adapter serves."""
        pass

    @abstractmethod
    def get_recipient(self, user) -> Optional[str]:
        """Return the address for `user` on this channel, or None."""
        pass

    @abstractmethod
    def send(
        self,
        user,
        message: Dict[str, Any],
        data: Dict[str, Any],
        stop_event: Optional[threading.Event] = None,
    ) -> SendResult:
        """
        Send a rendered message.

        Args:
            user: Recipient user row
            message: Channel-shaped rendered fields (title/body, subject/content, ...)
            data: Notification payload, plus the notification id
            stop_event: Set by the dispatcher when the send timed out

        Returns:
            SendResult
        """
        pass

    def validate_config(self) -> bool:
        """
        Validate that the adapter is properly configured.

        Returns:
            True if configured correctly, False otherwise
        """
        return True


class DryRunAdapter(ChannelAdapter):
    """Logs the message instead of calling a provider and reports success."""

    def send(self, user, message, data, stop_event=None) -> SendResult:
        if stop_event is not None and stop_event.is_set():
            return SendResult(success=False, error="send cancelled")
        recipient = self.get_recipient(user)
        title = message.get('subject') or message.get('title', '')
        logger.info(
            f"[DRY RUN] {self.channel.value} to {mask_recipient(self.channel.value, recipient)}: {title}"
        )
        return SendResult(success=True, provider_message_id=f"dry-run-{uuid.uuid4().hex[:12]}")


class DryRunPushAdapter(DryRunAdapter):
    @property
    def channel(self) -> Channel:
        return Channel.PUSH

    def get_recipient(self, user) -> Optional[str]:
        return user.push_token or None


class DryRunEmailAdapter(DryRunAdapter):
    @property
    def channel(self) -> Channel:
        return Channel.EMAIL

    def get_recipient(self, user) -> Optional[str]:
        return user.email or None


class DryRunSmsAdapter(DryRunAdapter):
    @property
    def channel(self) -> Channel:
        return Channel.SMS

    def get_recipient(self, user) -> Optional[str]:
        return user.phone or None


class InAppChannelAdapter(ChannelAdapter):
    """In-app delivery is the stored notification row itself."""

    @property
    def channel(self) -> Channel:
        return Channel.IN_APP

    def get_recipient(self, user) -> Optional[str]:
        return str(user.id) if user.id is not None else None

    def send(self, user, message, data, stop_event=None) -> SendResult:
        notification_id = data.get('notification_id')
        logger.debug(f"[IN_APP] User: {user.id}, Title: {message.get('title', '')}")
        return SendResult(
            success=True,
            provider_message_id=str(notification_id) if notification_id is not None else None,
        )


class SmtpEmailAdapter(DryRunEmailAdapter):
    """Email adapter over SMTP, configured from SMTP_* environment variables."""

    def validate_config(self) -> bool:
        required_vars = ['SMTP_SERVER', 'SMTP_PORT', 'SMTP_USERNAME', 'SMTP_PASSWORD']
        return all(os.environ.get(var) for var in required_vars)

    def send(self, user, message, data, stop_event=None) -> SendResult:
        if not self.validate_config():
            logger.error("Email not configured - SMTP environment variables not set")
            return SendResult(success=False, error="SMTP not configured")

        recipient = self.get_recipient(user)
        try:
            smtp_server = os.environ.get('SMTP_SERVER')
            smtp_port = int(os.environ.get('SMTP_PORT', '587'))
            username = os.environ.get('SMTP_USERNAME', '')
            password = os.environ.get('SMTP_PASSWORD', '')
            from_email = os.environ.get('FROM_EMAIL', 'noreply@notifications.local')

            msg = MIMEMultipart('alternative')
            msg['From'] = from_email
            msg['To'] = recipient
            msg['Subject'] = message.get('subject') or message.get('title', '')
            msg['Message-ID'] = f"<{uuid.uuid4().hex}@{from_email.rsplit('@', 1)[-1]}>"
            msg.attach(MIMEText(message.get('plain_content', ''), 'plain', 'utf-8'))
            content = message.get('content')
            if content and content != message.get('plain_content'):
                msg.attach(MIMEText(content, 'html', 'utf-8'))

            if stop_event is not None and stop_event.is_set():
                return SendResult(success=False, error="send cancelled")

            with smtplib.SMTP(smtp_server, smtp_port) as server:
                server.starttls()
                server.login(username, password)
                server.send_message(msg)

            logger.info(f"Email sent to {_mask_email(recipient)}")
            return SendResult(success=True, provider_message_id=msg['Message-ID'])

        except Exception as e:
            logger.error(f"Failed to send email to {_mask_email(recipient or '')}: {e}")
            return SendResult(success=False, error=str(e))


def load_adapter_class(path: str) -> type:
    """
    Import an adapter class from "package.module:ClassName".

    Raises:
        ValueError: if the path is malformed or the class is not a ChannelAdapter
    """
    if ':' not in path:
        raise ValueError(f"Adapter path must look like 'module:Class', got '{path}'")
    module_name, class_name = path.split(':', 1)
    module = importlib.import_module(module_name)
    adapter_class = getattr(module, class_name, None)
    if adapter_class is None:
        raise ValueError(f"{module_name} has no attribute {class_name}")
    if not (isinstance(adapter_class, type) and issubclass(adapter_class, ChannelAdapter)):
        raise ValueError("Adapter class must extend ChannelAdapter")
    return adapter_class


class ChannelRegistry:
    """Maps each Channel to the adapter instance that serves it."""

    def __init__(self):
        self._adapters: Dict[Channel, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter) -> None:
        if not isinstance(adapter, ChannelAdapter):
            raise ValueError("Adapter must extend ChannelAdapter")
        channel = Channel.parse(adapter.channel)
        if not adapter.validate_config():
            logger.warning(f"Adapter {type(adapter).__name__} for '{channel.value}' reports invalid configuration")
        self._adapters[channel] = adapter
        logger.info(f"Registered {type(adapter).__name__} for channel '{channel.value}'")

    def register_path(self, path: str) -> ChannelAdapter:
        adapter = load_adapter_class(path)()
        self.register(adapter)
        return adapter

    def get(self, channel) -> ChannelAdapter:
        """
        Raises:
            ChannelNotRegistered: if no adapter serves `channel`
        """
        try:
            key = Channel.parse(channel)
        except ValueError:
            raise ChannelNotRegistered(str(channel), self.list_channels()) from None
        adapter = self._adapters.get(key)
        if adapter is None:
            raise ChannelNotRegistered(key.value, self.list_channels())
        return adapter

    def has(self, channel) -> bool:
        try:
            return Channel.parse(channel) in self._adapters
        except ValueError:
            return False

    def list_channels(self) -> List[str]:
        return [c.value for c in self._adapters]


def build_default_registry(config=None) -> ChannelRegistry:
    """
    Registry with the in-app adapter, any adapters named in config, and
    dry-run adapters for the remaining channels.

    With dry-run enabled (config or NOTIFICATION_DRY_RUN), configured
    adapters are skipped and every external channel only logs.
    """
    registry = ChannelRegistry()
    registry.register(InAppChannelAdapter())

    dry_run = _is_dry_run_mode() or bool(config is not None and config.dry_run)
    adapter_paths = dict(config.adapters) if config is not None else {}

    if not dry_run:
        for channel_name, path in adapter_paths.items():
            adapter = registry.register_path(path)
            if adapter.channel.value != channel_name:
                raise ValueError(
                    f"Adapter {path} serves '{adapter.channel.value}', configured for '{channel_name}'"
                )
    elif adapter_paths:
        logger.info("Dry-run mode: ignoring configured channel adapters")

    for fallback in (DryRunPushAdapter(), DryRunEmailAdapter(), DryRunSmsAdapter()):
        if not registry.has(fallback.channel):
            registry.register(fallback)
    return registry
