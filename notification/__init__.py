"""
Notification Module

Multi-channel notification routing and delivery: preference-aware channel
selection, per-user rate limiting, templated rendering, per-channel
dispatch with an audit log, and a retrying durable queue.

Usage:
    from notification import NotificationService, build_default_registry

    service = NotificationService(session_factory, build_default_registry())
    result = service.send(user_id=42, type='booking_accepted', data={'booking_id': 7})
"""

from notification.catalog import Channel, Priority
from notification.channels import (
    ChannelAdapter,
    ChannelRegistry,
    SendResult,
    build_default_registry,
)
from notification.exceptions import (
    NotificationError,
    ChannelNotRegistered,
    InvalidStatusTransition,
    TemplateMissing,
    RecipientUnavailable,
    PayloadValidationError,
    RateLimiterUnavailable,
)
from notification.results import ChannelResult, DispatchOutcome, DispatchResult
from notification.rate_limiter import RateLimiter, RedisRateLimiter, InMemoryRateLimiter
from notification.service import NotificationService
from notification.queue_processor import QueueProcessor

__all__ = [
    # Channels
    'Channel',
    'Priority',
    'ChannelAdapter',
    'ChannelRegistry',
    'SendResult',
    'build_default_registry',
    # Errors
    'NotificationError',
    'ChannelNotRegistered',
    'InvalidStatusTransition',
    'TemplateMissing',
    'RecipientUnavailable',
    'PayloadValidationError',
    'RateLimiterUnavailable',
    # Results
    'ChannelResult',
    'DispatchOutcome',
    'DispatchResult',
    # Services
    'RateLimiter',
    'RedisRateLimiter',
    'InMemoryRateLimiter',
    'NotificationService',
    'QueueProcessor',
]
