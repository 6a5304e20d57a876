"""
Queue abstraction for analytics events.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production. Messages are serialized ``AnalyticsEvent``
payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions


class EventQueue(Protocol):
    """Minimal queue interface for handing events to the worker."""

    def enqueue(self, message: str) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        ...


@dataclass
class InMemoryEventQueue:
    """Simple FIFO queue for testing/dev."""

    items: list[str] = field(default_factory=list)

    def enqueue(self, message: str) -> None:
        self.items.append(message)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        if not self.items:
            return None
        return self.items.pop(0)


@dataclass
class RedisEventQueue:
    """Redis-backed queue using list push/pop operations."""

    url: str
    queue_key: str = "gallery:analytics"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def enqueue(self, message: str) -> None:
        self.client.rpush(self.queue_key, message)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        try:
            if block:
                result = self.client.blpop(self.queue_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, message = result
            else:
                message = self.client.lpop(self.queue_key)
                if message is None:
                    return None
            return message.decode("utf-8")
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections. Treat as an empty poll and
            # let the worker loop retry.
            self.client = redis.Redis.from_url(self.url)
            return None
