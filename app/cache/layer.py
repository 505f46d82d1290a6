import asyncio
import json
import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable

from cachetools import TLRUCache
from redis.asyncio import Redis, RedisError

from app.core.config import Settings

logger = logging.getLogger(__name__)

_MISSING = object()

# Pressure levels at which the layer backs off Redis
SKIP_L2_WRITES_LEVEL = 9
BYPASS_CACHE_LEVEL = 10


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


@dataclass(frozen=True)
class MemoryPressure:
    level: int
    ratio: float | None = None
    policy: str = "unknown"


def _entry_expiry(_key: str, entry: CacheEntry, _now: float) -> float:
    return entry.expires_at


def _glob_escape(text: str) -> str:
    return "".join("\\" + ch if ch in "*?[]\\" else ch for ch in text)


class RedisMemoryGuard:
    """
    Turns Redis ``INFO memory`` into a 0-10 pressure level.

    The level is used_memory / maxmemory in tenths; a server without
    maxmemory is always level 0. Readings are reused for refresh_interval
    seconds so a busy cache does not issue INFO on every miss.
    """

    def __init__(self, redis: Redis, refresh_interval: float = 5.0):
        self.redis = redis
        self.refresh_interval = refresh_interval
        self._last_check = 0.0
        self.last: MemoryPressure | None = None

    async def check(self) -> MemoryPressure:
        now = time.monotonic()
        if self.last is not None and (now - self._last_check) < self.refresh_interval:
            return self.last

        try:
            info = await self.redis.info("memory")
        except RedisError as e:
            logger.error("Memory check failed: %s", e)
            return MemoryPressure(level=0)

        policy = info.get("maxmemory_policy", "noeviction")
        limit = info.get("maxmemory", 0)
        if not limit:
            reading = MemoryPressure(level=0, policy=policy)
        else:
            ratio = info["used_memory"] / limit
            reading = MemoryPressure(level=int(min(ratio * 10, 10)), ratio=ratio, policy=policy)
            if reading.level >= SKIP_L2_WRITES_LEVEL:
                logger.warning(
                    "Redis memory critical: level=%s ratio=%.1f%% policy=%s",
                    reading.level,
                    ratio * 100,
                    policy,
                )

        self.last = reading
        self._last_check = now
        return reading


class CacheLayer:
    """
    Two-tier query cache with fixed, absolute expiry.

    L1: Process-local TLRUCache (fast, bounded; entries expire at their own
        absolute deadline and are dropped lazily on access)
    L2: Optional Redis tier shared between workers

    Features:
    - Single-flight loading: concurrent misses for one key await one
      computation, and no lock is held while it runs
    - Entries are written only after the loader succeeds
    - Graceful degradation when Redis is unavailable
    - Automatic key namespacing
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        maxsize: int = 2048,
        namespace: str = "appcache:",
        redis: Redis | None = None,
        redis_dsn: str | None = None,
        redis_pool_size: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self._clock = clock
        self._redis: Redis | None = redis
        self._redis_dsn = redis_dsn
        self._redis_pool_size = redis_pool_size
        self._memory_guard: RedisMemoryGuard | None = None
        self.l1: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=clock)
        self._inflight: dict[str, asyncio.Future] = {}
        self._initialized = False

        # Stats tracking
        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "coalesced": 0,
            "errors": 0,
            "pressure_skips": 0,
        }

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.time):
        return cls(
            ttl_seconds=settings.query_cache_ttl_seconds,
            maxsize=settings.l1_maxsize,
            namespace=settings.cache_namespace,
            redis_dsn=settings.redis_dsn if settings.redis_enabled else None,
            redis_pool_size=settings.redis_pool_size,
            clock=clock,
        )

    async def init_cache(self):
        """Connect the Redis tier if one is configured. Safe to call repeatedly."""
        if self._initialized:
            return
        self._initialized = True

        if self._redis is None and self._redis_dsn:
            self._redis = Redis.from_url(
                self._redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=self._redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )

        if self._redis is None:
            logger.info("Cache layer initialized (L1 only)")
            return

        try:
            await self._redis.ping()
            self._memory_guard = RedisMemoryGuard(self._redis)
            logger.info("Cache layer initialized with Redis tier")
        except RedisError as e:
            logger.error("Redis initialization failed, continuing with L1 only: %s", e)
            self._redis = None
            self._memory_guard = None

    def _l1_key(self, key: str) -> str:
        return f"{self.namespace}l1:{key}"

    def _l2_key(self, key: str) -> str:
        return f"{self.namespace}l2:{key}"

    def _serialize(self, entry: CacheEntry) -> str:
        return json.dumps({"expires_at": entry.expires_at, "value": entry.value}, default=str)

    def _deserialize(self, raw: str) -> CacheEntry | None:
        try:
            data = json.loads(raw)
            return CacheEntry(value=data["value"], expires_at=float(data["expires_at"]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable L2 entry")
            return None

    async def _lookup(self, key: str) -> Any:
        entry = self.l1.get(self._l1_key(key))
        if entry is not None:
            self.stats["l1_hits"] += 1
            logger.debug("L1 hit: %s", key)
            return entry.value

        if self._redis:
            try:
                raw = await self._redis.get(self._l2_key(key))
            except RedisError as e:
                logger.error("Redis GET error for %s: %s", key, e)
                self.stats["errors"] += 1
                raw = None
            if raw is not None:
                entry = self._deserialize(raw)
                if entry is not None and self._clock() < entry.expires_at:
                    self.stats["l2_hits"] += 1
                    logger.debug("L2 hit: %s", key)
                    # keeps the original deadline; promotion never extends a TTL
                    self.l1[self._l1_key(key)] = entry
                    return entry.value

        return _MISSING

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the live value for key, computing and storing it on a miss.

        Args:
            key: Cache key (namespaced automatically)
            compute: Async loader called on a miss; its result is stored with
                expiry now + ttl_seconds

        Returns:
            The cached or freshly computed value
        """
        await self.init_cache()

        value = await self._lookup(key)
        if value is not _MISSING:
            return value

        if self._memory_guard:
            pressure = await self._memory_guard.check()
            if pressure.level >= BYPASS_CACHE_LEVEL:
                logger.warning("Emergency mode: bypassing cache for %s", key)
                self.stats["pressure_skips"] += 1
                return await compute()

        while True:
            pending = self._inflight.get(key)
            if pending is None:
                break
            try:
                value = await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                # the request computing this key was cancelled; try again
                continue
            self.stats["coalesced"] += 1
            return value

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        self.stats["misses"] += 1
        logger.debug("Loading from source: %s", key)
        try:
            value = await compute()
        except Exception as exc:
            future.set_exception(exc)
            # waiters re-raise it; mark it retrieved for the no-waiter case
            future.exception()
            raise
        except BaseException:
            future.cancel()
            raise
        else:
            entry = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
            self.l1[self._l1_key(key)] = entry
            future.set_result(value)
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]

        await self._set_l2(key, entry)
        return value

    async def _set_l2(self, key: str, entry: CacheEntry):
        if not self._redis:
            return

        if self._memory_guard:
            pressure = await self._memory_guard.check()
            if pressure.level >= SKIP_L2_WRITES_LEVEL:
                logger.debug("Skipping Redis write due to pressure: %s", key)
                self.stats["pressure_skips"] += 1
                return

        ttl = math.ceil(entry.expires_at - self._clock())
        if ttl <= 0:
            return
        try:
            await self._redis.set(self._l2_key(key), self._serialize(entry), ex=ttl)
            logger.debug("Stored in L2: %s (ttl=%ss)", key, ttl)
        except RedisError as e:
            logger.error("Redis SET error for %s: %s", key, e)
            self.stats["errors"] += 1

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix from both tiers."""
        await self.init_cache()

        l1_prefix = self._l1_key(prefix)
        doomed = [k for k in list(self.l1.keys()) if k.startswith(l1_prefix)]
        for k in doomed:
            self.l1.pop(k, None)
        deleted_count = len(doomed)

        if not self._redis:
            return deleted_count

        try:
            pattern = _glob_escape(self._l2_key(prefix)) + "*"
            cursor = 0
            while True:
                cursor, keys = await self._redis.scan(cursor, match=pattern, count=100)
                if keys:
                    await self._redis.delete(*keys)
                    deleted_count += len(keys)
                if cursor == 0:
                    break
            logger.debug("Prefix delete completed: %s (%d keys)", prefix, deleted_count)
        except RedisError as e:
            logger.error("Prefix delete error for %s: %s", prefix, e)
            self.stats["errors"] += 1
        return deleted_count

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error("Error closing Redis: %s", e)

    def get_stats(self) -> dict:
        """Get cache statistics including memory pressure."""
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]

        stats = {
            **self.stats,
            "l1_size": len(self.l1),
            "l1_maxsize": self.l1.maxsize,
            "redis": self._redis is not None,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total if total > 0 else 0
            ),
        }

        if self._memory_guard and self._memory_guard.last is not None:
            stats["redis_pressure"] = asdict(self._memory_guard.last)

        return stats
