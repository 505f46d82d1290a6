from functools import wraps
from typing import Any, Callable

from app.cache.keys import QueryKind, identity_prefix, query_key


def _cacheable(value: Any) -> Any:
    if isinstance(value, list):
        return [_cacheable(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


def cached_query(kind: QueryKind, key_params: Callable[..., dict] | None = None):
    """
    Decorator for async read methods shaped ``(self, identity, *args)``.

    The owner must expose ``cache`` (a CacheLayer) and ``key_mode``.
    key_params receives the remaining args/kwargs and returns the query
    parameters folded into the key in strict mode. Example:
      @cached_query(QueryKind.LIST_BY_STATUS, lambda status: {"status": int(status)})
      async def rows_by_status(self, identity, status): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, identity: str, *args, **kwargs):
            params = key_params(*args, **kwargs) if key_params else None
            key = query_key(kind, identity, params, mode=self.key_mode)

            # loader closure calls the original function
            async def loader():
                return _cacheable(await fn(self, identity, *args, **kwargs))

            return await self.cache.get_or_compute(key, loader)

        return wrapper

    return decorator


def invalidates_queries(fn: Callable):
    """
    Decorator for async write methods shaped ``(self, identity, *args)``.

    When the owner's ``invalidate_on_write`` is set, every cached query of
    the identity is dropped after the write returns. Otherwise cached reads
    keep serving the old result until they expire.
    """

    @wraps(fn)
    async def wrapper(self, identity: str, *args, **kwargs):
        result = await fn(self, identity, *args, **kwargs)
        if self.invalidate_on_write:
            await self.cache.delete_prefix(identity_prefix(identity))
        return result

    return wrapper
