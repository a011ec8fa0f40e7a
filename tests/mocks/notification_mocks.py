#!/usr/bin/env python3
"""
Test Mock Implementations - channel adapters and a Redis stand-in.

These doubles provide deterministic behavior for unit tests without
talking to providers or a Redis server.
"""
import threading
from typing import Dict, List, Any, Optional

from redis.exceptions import ConnectionError as RedisConnectionError

from notification.catalog import Channel
from notification.channels import ChannelAdapter, SendResult, build_default_registry

_RECIPIENT_FIELDS = {
    Channel.PUSH: 'push_token',
    Channel.EMAIL: 'email',
    Channel.SMS: 'phone',
}


class RecordingAdapter(ChannelAdapter):
    """Records every send; succeeds unless told to fail or raise."""

    def __init__(self, channel: Channel, fail_with: Optional[str] = None, raise_with: Optional[Exception] = None):
        self._channel = channel
        self.fail_with = fail_with
        self.raise_with = raise_with
        self.sent: List[Dict[str, Any]] = []
        self._counter = 0

    @property
    def channel(self) -> Channel:
        return self._channel

    def get_recipient(self, user) -> Optional[str]:
        if self._channel == Channel.IN_APP:
            return str(user.id)
        return getattr(user, _RECIPIENT_FIELDS[self._channel])

    def send(self, user, message, data, stop_event=None) -> SendResult:
        self.sent.append({'user_id': user.id, 'message': dict(message), 'data': dict(data)})
        if self.raise_with is not None:
            raise self.raise_with
        if self.fail_with is not None:
            return SendResult(success=False, error=self.fail_with)
        self._counter += 1
        return SendResult(success=True, provider_message_id=f"{self._channel.value}-{self._counter}")


class SlowAdapter(RecordingAdapter):
    """Blocks until its stop_event is set (or a long safety timeout passes)."""

    def __init__(self, channel: Channel):
        super().__init__(channel)
        self.cancelled = threading.Event()

    def send(self, user, message, data, stop_event=None) -> SendResult:
        self.sent.append({'user_id': user.id, 'message': dict(message), 'data': dict(data)})
        if stop_event is not None and stop_event.wait(5):
            self.cancelled.set()
            return SendResult(success=False, error="cancelled")
        return SendResult(success=True)


def recording_registry(**overrides):
    """
    Registry whose push/email/sms/in_app adapters are all RecordingAdapters.

    Returns:
        (registry, {channel value: adapter})
    """
    registry = build_default_registry()
    adapters = {}
    for channel in Channel:
        adapter = overrides.get(channel.value) or RecordingAdapter(channel)
        registry.register(adapter)
        adapters[channel.value] = adapter
    return registry, adapters


def _parse_bound(bound):
    """Redis score bound -> (value, exclusive)."""
    if isinstance(bound, (int, float)):
        return float(bound), False
    text = str(bound)
    exclusive = text.startswith('(')
    if exclusive:
        text = text[1:]
    return float(text), exclusive


class FakeRedis:
    """In-memory subset of the Redis sorted-set API used by RedisRateLimiter."""

    def __init__(self):
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.available = True
        self._lock = threading.Lock()

    def _check(self):
        if not self.available:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def ping(self):
        self._check()
        return True

    def zadd(self, key, mapping):
        self._check()
        with self._lock:
            zset = self.zsets.setdefault(key, {})
            added = sum(1 for member in mapping if member not in zset)
            zset.update({member: float(score) for member, score in mapping.items()})
            return added

    def zremrangebyscore(self, key, min, max):
        self._check()
        low, low_excl = _parse_bound(min)
        high, high_excl = _parse_bound(max)
        with self._lock:
            zset = self.zsets.get(key, {})
            doomed = [
                member for member, score in zset.items()
                if (score > low if low_excl else score >= low) and (score < high if high_excl else score <= high)
            ]
            for member in doomed:
                del zset[member]
            return len(doomed)

    def zcard(self, key):
        self._check()
        return len(self.zsets.get(key, {}))

    def zrem(self, key, *members):
        self._check()
        with self._lock:
            zset = self.zsets.get(key, {})
            return sum(1 for member in members if zset.pop(member, None) is not None)

    def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds
        return key in self.zsets

    def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.zsets.pop(key, None) is not None)

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.calls = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return queue

    def execute(self):
        self.redis._check()
        results = [getattr(self.redis, name)(*args, **kwargs) for name, args, kwargs in self.calls]
        self.calls = []
        return results
