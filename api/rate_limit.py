"""Fixed-window request limiter on Redis INCR/EXPIRE."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Protocol

logger = logging.getLogger(__name__)


class CounterStore(Protocol):
    """The two redis.asyncio calls the limiter needs."""
    async def incr(self, name: str) -> int: ...
    async def expire(self, name: str, time: int) -> bool: ...


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    count: int


def client_ip(headers: Mapping[str, str], fallback: str = "ip:unknown") -> str:
    """First client address from the usual proxy headers."""
    for name in ("x-forwarded-for", "x-real-ip", "x-vercel-forwarded-for", "cf-connecting-ip"):
        value = headers.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return fallback


class RateLimiter:
    """
    ``limit`` requests per ``window_seconds`` per (route key, client ip).

    The window starts at the first hit; the key expires with it.
    """

    def __init__(self, store: CounterStore, limit: int = 60, window_seconds: int = 60):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    @classmethod
    def from_env(cls, store: CounterStore) -> "RateLimiter":
        window_ms = int(os.getenv("RATE_LIMIT_WINDOW_MS", "60000"))
        return cls(
            store,
            limit=int(os.getenv("RATE_LIMIT_MAX", "60")),
            window_seconds=max(1, -(-window_ms // 1000)),
        )

    async def hit(self, key: str, ip: str) -> RateLimitResult:
        counter = f"rl:{key}:{ip}"
        count = await self.store.incr(counter)
        if count == 1:
            await self.store.expire(counter, self.window_seconds)

        allowed = count <= self.limit
        if not allowed:
            logger.warning(f"Rate limit hit: {key} from {ip} ({count}/{self.limit})")
        return RateLimitResult(allowed=allowed, remaining=max(0, self.limit - count), count=count)
