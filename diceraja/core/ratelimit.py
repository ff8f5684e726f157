"""
Token-bucket rate limiter.

- In-memory, keyed by bearer token or client ip plus a route category.
- Disabled unless RATE_LIMIT_ENABLED is set.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from diceraja.core.config import Settings, settings


@dataclass
class RateLimitConfig:
    enabled: bool = False
    per_minute_default: int = 120
    burst_default: int = 30

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "RateLimitConfig":
        cfg = cfg or settings
        return cls(
            enabled=cfg.RATE_LIMIT_ENABLED,
            per_minute_default=max(1, cfg.RATE_LIMIT_PER_MINUTE_DEFAULT),
            burst_default=max(1, cfg.RATE_LIMIT_BURST_DEFAULT),
        )


class TokenBucket:
    def __init__(self, capacity: int, refill_rate_per_sec: float, time_fn: Callable[[], float] = time.monotonic):
        self.capacity = max(1, capacity)
        self.tokens = float(self.capacity)
        self.refill_rate = max(0.0, refill_rate_per_sec)
        self.time_fn = time_fn
        self.last_refill = self.time_fn()

    def allow(self, cost: float = 1.0) -> bool:
        now = self.time_fn()
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
            self.last_refill = now
        if self.tokens >= cost:
            self.tokens -= cost
            return True
        return False

    def is_idle(self, now: float, idle_seconds: float) -> bool:
        """Untouched for `idle_seconds` and refilled to capacity by now."""
        elapsed = now - self.last_refill
        if elapsed < idle_seconds:
            return False
        return self.tokens + elapsed * self.refill_rate >= self.capacity


class InMemoryRateLimiter:
    def __init__(self, time_fn: Callable[[], float] = time.monotonic, idle_seconds: float = 600.0):
        self.time_fn = time_fn
        self.idle_seconds = idle_seconds
        self.buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()
        self._last_sweep = time_fn()

    def allow(self, key: str, *, per_minute: int, burst: int) -> bool:
        with self._lock:
            self._sweep_idle()
            bucket = self.buckets.get(key)
            if bucket is None:
                bucket = self.buckets[key] = TokenBucket(
                    capacity=burst,
                    refill_rate_per_sec=per_minute / 60.0,
                    time_fn=self.time_fn,
                )
            return bucket.allow()

    def _sweep_idle(self) -> None:
        # A full idle bucket is indistinguishable from a fresh one
        now = self.time_fn()
        if now - self._last_sweep < self.idle_seconds:
            return
        self._last_sweep = now
        for key in [k for k, bucket in self.buckets.items() if bucket.is_idle(now, self.idle_seconds)]:
            del self.buckets[key]
