"""Structured results returned by dispatch operations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any


class DispatchOutcome(str, Enum):
    SENT = "sent"                   # every attempted channel sent
    PARTIAL = "partial"             # some channels sent, some did not
    FAILED = "failed"               # no channel sent
    CANCELLED = "cancelled"         # every channel blocked by quiet hours
    NO_CHANNELS = "no_channels"
    RATE_LIMITED = "rate_limited"
    INVALID_PAYLOAD = "invalid_payload"
    USER_NOT_FOUND = "user_not_found"


@dataclass
class ChannelResult:
    channel: str
    status: str
    log_id: Optional[int] = None
    recipient: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "sent"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel': self.channel,
            'status': self.status,
            'success': self.success,
            'log_id': self.log_id,
            'provider_message_id': self.provider_message_id,
            'error': self.error,
        }


@dataclass
class DispatchResult:
    user_id: int
    type: str
    outcome: DispatchOutcome
    notification_id: Optional[int] = None
    channels: List[ChannelResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in (DispatchOutcome.SENT, DispatchOutcome.PARTIAL)

    @property
    def channels_sent(self) -> List[str]:
        return [r.channel for r in self.channels if r.success]

    @property
    def channels_failed(self) -> List[str]:
        return [r.channel for r in self.channels if r.status == "failed"]

    def channel(self, name: str) -> Optional[ChannelResult]:
        for result in self.channels:
            if result.channel == name:
                return result
        return None

    @staticmethod
    def summarize(results: List[ChannelResult]) -> DispatchOutcome:
        """Fold per-channel results into one outcome."""
        if not results:
            return DispatchOutcome.NO_CHANNELS
        sent = sum(1 for r in results if r.success)
        if sent == len(results):
            return DispatchOutcome.SENT
        if sent:
            return DispatchOutcome.PARTIAL
        if all(r.status == "cancelled" for r in results):
            return DispatchOutcome.CANCELLED
        return DispatchOutcome.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'type': self.type,
            'outcome': self.outcome.value,
            'success': self.success,
            'notification_id': self.notification_id,
            'channels_sent': self.channels_sent,
            'channels_failed': self.channels_failed,
            'channels': [r.to_dict() for r in self.channels],
            'error': self.error,
        }
