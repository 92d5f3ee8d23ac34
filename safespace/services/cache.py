"""
Response cache — maps (user, personality, message) to a finished reply.

The cache is a pure optimization: a miss only costs an upstream call. Two
backends share one async interface:
  - InMemoryResponseCache: per-process LRU with a per-entry TTL (default)
  - RedisResponseCache: shared across workers (FF_USE_REDIS=true)
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Optional, Protocol

from ..core.config import get_settings
from ..core.flags import get_flags

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "::"

# Redis SCAN MATCH metacharacters
_GLOB_SPECIAL = "\\*?[]"


def _escape_user(user_id: str) -> str:
    """Escape `\\` and `:` so a user id can never contain the separator."""
    return user_id.replace("\\", "\\\\").replace(":", "\\:")


def _user_prefix(user_id: str) -> str:
    return f"{_escape_user(user_id)}{KEY_SEPARATOR}"


def _glob_escape(text: str) -> str:
    return "".join(f"\\{c}" if c in _GLOB_SPECIAL else c for c in text)


def build_cache_key(user_id: str, personality: str, message: str) -> str:
    """
    Stable composite key. Whitespace is trimmed, case is kept.
    The user segment is escaped, so one user's keys never share a prefix
    with another's.
    """
    return KEY_SEPARATOR.join([_escape_user(user_id), str(personality), message.strip()])


class ResponseCache(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def put(self, key: str, reply: str) -> None: ...

    async def invalidate_user(self, user_id: str) -> None: ...


# ── In-process backend ───────────────────────────────────────────────

class InMemoryResponseCache:
    """LRU cache whose entries also expire `ttl_seconds` after being written."""

    def __init__(
        self,
        max_entries: int = 200,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, reply = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return reply

    async def put(self, key: str, reply: str) -> None:
        self._entries[key] = (self._clock() + self.ttl_seconds, reply)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache full, evicted %s", evicted)

    async def invalidate_user(self, user_id: str) -> None:
        prefix = _user_prefix(user_id)
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]


# ── Redis backend ────────────────────────────────────────────────────

class RedisResponseCache:
    """
    Redis-backed cache. TTL is enforced with SET EX; the size bound is the
    server's job (configure maxmemory-policy allkeys-lru).
    Redis failures are logged and read as a miss.
    """

    def __init__(self, client, ttl_seconds: int = 300, prefix: str = "safespace:reply:"):
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(self.prefix + key)
        except Exception as e:
            logger.warning("Redis cache get failed: %s", e)
            return None

    async def put(self, key: str, reply: str) -> None:
        try:
            await self._client.set(self.prefix + key, reply, ex=self.ttl_seconds)
        except Exception as e:
            logger.warning("Redis cache put failed: %s", e)

    async def invalidate_user(self, user_id: str) -> None:
        pattern = _glob_escape(self.prefix + _user_prefix(user_id)) + "*"
        try:
            async for key in self._client.scan_iter(match=pattern):
                await self._client.delete(key)
        except Exception as e:
            logger.warning("Redis cache invalidation failed (user=%s): %s", user_id, e)


# ── Global cache ─────────────────────────────────────────────────────

_cache: Optional[ResponseCache] = None


def get_cache() -> ResponseCache:
    """Get or create the process-wide cache, picking the backend from flags."""
    global _cache
    if _cache is None:
        settings = get_settings()
        if get_flags().use_redis:
            from ..core.redis import get_redis
            _cache = RedisResponseCache(get_redis(), ttl_seconds=settings.cache_ttl_seconds)
            logger.info("Response cache: redis (ttl=%ds)", settings.cache_ttl_seconds)
        else:
            _cache = InMemoryResponseCache(
                max_entries=settings.cache_max_entries,
                ttl_seconds=settings.cache_ttl_seconds,
            )
            logger.info(
                "Response cache: in-memory (max=%d ttl=%ds)",
                settings.cache_max_entries, settings.cache_ttl_seconds,
            )
    return _cache
