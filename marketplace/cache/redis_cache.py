"""
Best-effort cache on Redis.

Every entry can be written with a set of tags (for example `project:<id>`).
Each tag is a Redis set holding the keys written under it, so a mutation can
evict everything that depends on an entity without knowing the key shapes.
None of the methods raise: Redis or serialization failures are logged and
behave like a cache miss.
"""

import json
import logging
from typing import Any, Callable, Iterable, Optional

import redis

logger = logging.getLogger(__name__)


class RedisCache:
    def __init__(self, client: "redis.Redis", prefix: str = "marketplace", default_ttl: int = 300, tag_ttl: int = 86400):
        self._client = client
        self._prefix = prefix
        self.default_ttl = default_ttl
        self.tag_ttl = tag_ttl

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self._prefix}:tag:{tag}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(self._key(key))
            return json.loads(raw) if raw is not None else None
        except (redis.RedisError, ValueError, TypeError) as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None, tags: Iterable[str] = ()) -> None:
        try:
            payload = json.dumps(value, default=str)
            full_key = self._key(key)
            pipe = self._client.pipeline()
            pipe.setex(full_key, ttl or self.default_ttl, payload)
            for tag in tags:
                tag_key = self._tag_key(tag)
                pipe.sadd(tag_key, full_key)
                pipe.expire(tag_key, self.tag_ttl)
            pipe.execute()
        except (redis.RedisError, ValueError, TypeError) as e:
            logger.warning("Cache set failed for %s: %s", key, e)

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self._client.delete(*(self._key(k) for k in keys))
        except redis.RedisError as e:
            logger.warning("Cache delete failed for %s: %s", keys, e)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry recorded under any of `tags`. Returns the number of keys removed."""
        removed = 0
        for tag in sorted(set(tags)):
            tag_key = self._tag_key(tag)
            try:
                members = self._client.smembers(tag_key)
                if members:
                    removed += self._client.delete(*members)
                self._client.delete(tag_key)
            except redis.RedisError as e:
                logger.warning("Cache invalidation failed for tag %s: %s", tag, e)
        return removed

    def remember(self, key: str, ttl: int, tags: Iterable[str], loader: Callable[[], Any]) -> Any:
        """Read-through helper: return the cached value or load, store and return it."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value, ttl=ttl, tags=tags)
        return value
