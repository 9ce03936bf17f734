"""In-memory TTL cache store with structured keys and tag invalidation.

All SSO caches (JWKS, organization access, user teams, role permissions,
team permissions) share one ``CacheStore``. Keys are ``CacheKey`` values
rather than concatenated strings so the namespaces cannot collide, and
entries carry tags so that org- or team-wide invalidation is exact.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterable,
    Optional,
    Set,
    Tuple,
    TypeVar,
    Union,
)

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

KeyPart = Union[int, str, None]

_MISSING = object()


@dataclass(frozen=True)
class CacheKey:
    """Structured cache key: ``{namespace, user_id, org_id, discriminator}``."""

    namespace: str
    user_id: KeyPart = None
    org_id: KeyPart = None
    discriminator: KeyPart = None

    def __str__(self) -> str:
        parts = [self.namespace]
        for label, value in (
            ("u", self.user_id),
            ("o", self.org_id),
            ("d", self.discriminator),
        ):
            if value is not None:
                parts.append(f"{label}={type(value).__name__}:{value}")
        return ":".join(parts)


class CacheEntry(Generic[T]):
    """A single cache entry with value, tags and expiration time."""

    __slots__ = ("value", "expires_at", "tags")

    def __init__(self, value: T, ttl_seconds: float, tags: Iterable[str] = ()):
        self.value = value
        self.expires_at = time.monotonic() + ttl_seconds
        self.tags: Set[str] = set(tags)

    def is_expired(self) -> bool:
        return time.monotonic() > self.expires_at


class CacheStore:
    """
    Async-safe key/value cache with per-entry TTL, tags and an LRU cap.

    Expiry is lazy: an expired entry is dropped when it is next read or when
    a write needs room. There is no background sweeper.

    ``remember`` runs the factory outside the lock, so two concurrent misses
    may both compute the value. Each miss registers an in-flight load; a
    ``forget``, ``invalidate_tags`` or ``clear`` that lands while the factory
    runs cancels that load's write, so a value computed before an
    invalidation is returned to its caller but never stored.

    Example:
        >>> store = CacheStore()
        >>> key = CacheKey("org_access", user_id=42, org_id="acme")
        >>> grant = await store.remember(key, 300, lambda: client.get_access(token, "acme"))
    """

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._entries: "OrderedDict[CacheKey, CacheEntry[Any]]" = OrderedDict()
        self._tag_index: Dict[str, Set[CacheKey]] = {}
        self._inflight: Dict[CacheKey, Tuple[object, Set[str]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: CacheKey, default: Any = None) -> Any:
        """Return a cached value, or ``default`` when missing or expired."""
        async with self._lock:
            value = self._lookup(key)
        return default if value is _MISSING else value

    async def has(self, key: CacheKey) -> bool:
        """Whether a live entry exists for ``key`` (a cached ``None`` counts)."""
        async with self._lock:
            return self._lookup(key) is not _MISSING

    async def set(
        self,
        key: CacheKey,
        value: Any,
        ttl_seconds: float,
        tags: Iterable[str] = (),
    ) -> None:
        """Store a value with a TTL and optional invalidation tags."""
        async with self._lock:
            self._inflight.pop(key, None)
            self._store(key, value, ttl_seconds, tags)

    async def remember(
        self,
        key: CacheKey,
        ttl_seconds: float,
        factory: Callable[[], Awaitable[T]],
        tags: Iterable[str] = (),
    ) -> T:
        """
        Cache-aside read.

        Returns the cached value when present (including a cached ``None``),
        otherwise awaits ``factory()``, stores its result and returns it.
        Exceptions from the factory propagate and nothing is stored. The
        result is not stored when the key was invalidated, or another miss
        for it started, while the factory ran.
        """
        tag_set = set(tags)
        load = object()
        async with self._lock:
            value = self._lookup(key)
            if value is _MISSING:
                self._inflight[key] = (load, tag_set)
        if value is not _MISSING:
            logger.debug("cache_hit", key=str(key))
            return value

        logger.debug("cache_miss", key=str(key))
        try:
            result = await factory()
        except BaseException:
            async with self._lock:
                self._end_load(key, load)
            raise

        async with self._lock:
            if self._end_load(key, load):
                self._store(key, result, ttl_seconds, tag_set)
            else:
                logger.debug("cache_store_skipped", key=str(key))
        return result

    async def forget(self, key: CacheKey) -> None:
        """Remove a specific key from the cache."""
        async with self._lock:
            self._drop(key)
            self._inflight.pop(key, None)

    async def invalidate_tags(self, *tags: str) -> int:
        """
        Remove every entry carrying any of ``tags``.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            keys: Set[CacheKey] = set()
            for tag in tags:
                keys.update(self._tag_index.get(tag, ()))
            for key in keys:
                self._drop(key)
            wanted = set(tags)
            for key in [k for k, (_, t) in self._inflight.items() if t & wanted]:
                del self._inflight[key]

        if keys:
            logger.debug("cache_tags_invalidated", tags=list(tags), removed=len(keys))
        return len(keys)

    async def clear(self) -> None:
        """Clear all entries from the cache."""
        async with self._lock:
            self._entries.clear()
            self._tag_index.clear()
            self._inflight.clear()

    @property
    def size(self) -> int:
        """Current number of entries in the cache (expired ones included)."""
        return len(self._entries)

    # Internal helpers; callers hold the lock.

    def _lookup(self, key: CacheKey) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if entry.is_expired():
            self._drop(key)
            return _MISSING
        self._entries.move_to_end(key)
        return entry.value

    def _end_load(self, key: CacheKey, load: object) -> bool:
        """Finish a load; True when it is still the current one for ``key``."""
        current = self._inflight.get(key)
        if current is None or current[0] is not load:
            return False
        del self._inflight[key]
        return True

    def _store(
        self,
        key: CacheKey,
        value: Any,
        ttl_seconds: float,
        tags: Iterable[str],
    ) -> None:
        self._drop(key)

        expired = [k for k, e in self._entries.items() if e.is_expired()]
        for k in expired:
            self._drop(k)

        while len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            self._drop(oldest)

        entry: CacheEntry[Any] = CacheEntry(value, ttl_seconds, tags)
        self._entries[key] = entry
        for tag in entry.tags:
            self._tag_index.setdefault(tag, set()).add(key)

    def _drop(self, key: CacheKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is None:
                continue
            keys.discard(key)
            if not keys:
                del self._tag_index[tag]


_cache_store: Optional[CacheStore] = None


def get_cache_store(max_entries: int = 10000) -> CacheStore:
    """Get the process-wide cache store, creating it on first use."""
    global _cache_store
    if _cache_store is None:
        _cache_store = CacheStore(max_entries=max_entries)
    return _cache_store


def reset_cache_store() -> None:
    """Drop the process-wide cache store (used by tests)."""
    global _cache_store
    _cache_store = None
