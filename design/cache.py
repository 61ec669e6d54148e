"""Extracted design systems keyed by a digest of their source URL."""
from __future__ import annotations

import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class DesignSystemCache:
    """Lets batches that share a source asset skip the fetch and the vision call.

    Entries go to Redis when a client or URL is configured.  Without one, or
    once Redis has failed, they stay in process memory: at most
    ``max_entries`` of them, each dropped after ``ttl_seconds``.
    """

    def __init__(
        self,
        client: Optional[Redis] = None,
        *,
        redis_url: Optional[str] = None,
        ttl_seconds: int = 60 * 60 * 24,
        namespace: str = "design-system",
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._owns_client = client is None and bool(redis_url)
        # from_url connects lazily, on the first command
        self._redis: Optional[Redis] = client or (Redis.from_url(redis_url) if redis_url else None)
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self.max_entries = max_entries
        self._clock = clock
        self._memory: "OrderedDict[str, Tuple[float, Dict[str, Any]]]" = OrderedDict()

    def _key_for(self, source_url: str) -> str:
        digest = hashlib.sha256(source_url.encode("utf-8")).hexdigest()
        return f"{self.namespace}:{digest}"

    async def _drop_redis(self, exc: RedisError) -> None:
        logger.warning("Design system cache falls back to process memory: %s", exc)
        redis, self._redis = self._redis, None
        if redis is not None and self._owns_client:
            await redis.aclose()

    async def get(self, source_url: str) -> Optional[Dict[str, Any]]:
        key = self._key_for(source_url)
        if self._redis is not None:
            try:
                raw = await self._redis.get(key)
            except RedisError as exc:
                await self._drop_redis(exc)
            else:
                if raw is None:
                    return None
                try:
                    return json.loads(raw)
                except ValueError:
                    logger.warning("Discarding unreadable cache entry %s", key)
                    return None

        entry = self._memory.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._memory[key]
            return None
        self._memory.move_to_end(key)
        return value

    async def set(self, source_url: str, value: Dict[str, Any]) -> None:
        key = self._key_for(source_url)
        if self._redis is not None:
            try:
                await self._redis.set(key, json.dumps(value, ensure_ascii=False), ex=self.ttl_seconds)
                return
            except RedisError as exc:
                await self._drop_redis(exc)

        self._memory[key] = (self._clock() + self.ttl_seconds, value)
        self._memory.move_to_end(key)
        while len(self._memory) > self.max_entries:
            self._memory.popitem(last=False)

    async def aclose(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
        self._redis = None
