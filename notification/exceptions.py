"""Exceptions raised by the notification routing core."""


class NotificationError(Exception):
    """Base class for notification errors."""


class ChannelNotRegistered(NotificationError, ValueError):
    """No adapter is registered for the requested channel."""

    def __init__(self, channel: str, available=None):
        self.channel = channel
        self.available = list(available or [])
        super().__init__(
            f"Unknown channel type: {channel}. Available: {', '.join(self.available) or 'none'}"
        )


class InvalidStatusTransition(NotificationError):
    """A delivery log or queue item was asked to move backwards or sideways."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity}: cannot move from '{current}' to '{target}'")


class TemplateMissing(NotificationError):
    def __init__(self, type: str, channel: str, language: str):
        self.type = type
        self.channel = channel
        self.language = language
        super().__init__(f"No template for type={type} channel={channel} language={language}")


class RecipientUnavailable(NotificationError):
    def __init__(self, channel: str, user_id=None):
        self.channel = channel
        self.user_id = user_id
        super().__init__("no recipient available")


class PayloadValidationError(NotificationError, ValueError):
    """The data payload does not match the schema registered for its type."""

    def __init__(self, type: str, errors):
        self.type = type
        self.errors = errors
        super().__init__(f"Invalid payload for notification type '{type}': {errors}")


class RateLimiterUnavailable(NotificationError):
    """The shared rate-limit backend could not be reached."""
