"""Per-identity admission control.

Authenticated callers each get a token bucket that starts full and is
replenished in whole periods. Unidentified callers share one fixed window.
Rejected requests are never queued; the caller gets REJECTED and can ask how
long to wait with retry_after().
"""

import logging
import math
import time
from enum import Enum
from threading import Lock
from typing import Callable

from cachetools import TTLCache

from app.core.config import Settings

logger = logging.getLogger(__name__)


class Admission(str, Enum):
    ALLOWED = "allowed"
    REJECTED = "rejected"


class TokenBucket:
    def __init__(self, capacity: int, refill_tokens: int, period: float, now: float):
        self.capacity = capacity
        self.refill_tokens = refill_tokens
        self.period = period
        self.tokens = capacity
        self.last_refill = now
        self._lock = Lock()

    def _replenish(self, now: float) -> None:
        periods = int((now - self.last_refill) // self.period)
        if periods > 0:
            self.tokens = min(self.capacity, self.tokens + periods * self.refill_tokens)
            self.last_refill += periods * self.period

    def try_acquire(self, now: float) -> bool:
        with self._lock:
            self._replenish(now)
            if self.tokens > 0:
                self.tokens -= 1
                return True
            return False

    def is_full(self, now: float) -> bool:
        with self._lock:
            self._replenish(now)
            return self.tokens >= self.capacity

    def retry_after(self, now: float) -> float:
        with self._lock:
            self._replenish(now)
            if self.tokens > 0:
                return 0.0
            return max(0.0, self.last_refill + self.period - now)


class FixedWindow:
    def __init__(self, limit: int, window: float, now: float):
        self.limit = limit
        self.window = window
        self.window_start = now
        self.count = 0
        self._lock = Lock()

    def _roll(self, now: float) -> None:
        elapsed = now - self.window_start
        if elapsed >= self.window:
            self.window_start += (elapsed // self.window) * self.window
            self.count = 0

    def try_acquire(self, now: float) -> bool:
        with self._lock:
            self._roll(now)
            if self.count < self.limit:
                self.count += 1
                return True
            return False

    def retry_after(self, now: float) -> float:
        with self._lock:
            self._roll(now)
            if self.count < self.limit:
                return 0.0
            return max(0.0, self.window_start + self.window - now)


class AdmissionLimiter:
    def __init__(
        self,
        capacity: int = 5,
        refill_tokens: int = 1,
        period: float = 60.0,
        anonymous_limit: int = 5,
        anonymous_window: float = 60.0,
        max_identities: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1 or refill_tokens < 1 or period <= 0:
            raise ValueError("token bucket needs capacity >= 1, refill_tokens >= 1 and period > 0")
        self.capacity = capacity
        self.refill_tokens = refill_tokens
        self.period = period
        self._clock = clock

        # An idle bucket is only dropped once it would have refilled completely,
        # so recreating it full never hands out extra permits.
        idle_ttl = math.ceil(capacity / refill_tokens) * period
        self._buckets: TTLCache = TTLCache(maxsize=max_identities, ttl=idle_ttl, timer=clock)
        self._buckets_lock = Lock()
        self._anonymous = FixedWindow(anonymous_limit, anonymous_window, clock())

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic):
        return cls(
            capacity=settings.rate_limit_capacity,
            refill_tokens=settings.rate_limit_refill_tokens,
            period=settings.rate_limit_period_seconds,
            anonymous_limit=settings.anonymous_limit,
            anonymous_window=settings.anonymous_window_seconds,
            max_identities=settings.rate_limit_max_identities,
            clock=clock,
        )

    def _bucket_for(self, identity: str, now: float) -> TokenBucket | None:
        with self._buckets_lock:
            bucket = self._buckets.get(identity)
            if bucket is None:
                if not self._make_room(now):
                    return None
                bucket = TokenBucket(self.capacity, self.refill_tokens, self.period, now)
            # re-insert to push the idle expiry forward
            self._buckets[identity] = bucket
        return bucket

    def _make_room(self, now: float) -> bool:
        # only buckets that are full again may be dropped before they expire
        if len(self._buckets) < self._buckets.maxsize:
            return True
        self._buckets.expire()
        if len(self._buckets) < self._buckets.maxsize:
            return True
        for key, bucket in list(self._buckets.items()):
            if bucket.is_full(now):
                del self._buckets[key]
                return True
        logger.warning("Admission table full (%d identities)", self._buckets.maxsize)
        return False

    def admit(self, identity: str | None) -> Admission:
        now = self._clock()
        if not identity:
            allowed = self._anonymous.try_acquire(now)
        else:
            bucket = self._bucket_for(identity, now)
            allowed = bucket is not None and bucket.try_acquire(now)

        if allowed:
            return Admission.ALLOWED
        logger.info("Rate limit exceeded for %s", identity or "anonymous callers")
        return Admission.REJECTED

    def retry_after(self, identity: str | None) -> float:
        now = self._clock()
        if not identity:
            return self._anonymous.retry_after(now)
        with self._buckets_lock:
            bucket = self._buckets.get(identity)
            table_full = len(self._buckets) >= self._buckets.maxsize
        if bucket is None:
            # turned away at a full table, retry once a bucket can refill
            return self.period if table_full else 0.0
        return bucket.retry_after(now)

    def tracked_identities(self) -> int:
        with self._buckets_lock:
            self._buckets.expire()
            return len(self._buckets)
