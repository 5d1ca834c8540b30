import json
import time
from typing import Any, Dict, Optional

from redis.asyncio import Redis
from redis.asyncio.cluster import RedisCluster

from services.config import Config
from services.ttl_cache import TTLCache

SESSION_PREFIX = "conversation:"


def _key(conversation_id):
    return f"{SESSION_PREFIX}{conversation_id}"


def build_redis_client():
    if Config.redis_cluster:
        print("[REDIS] Using CLUSTER Redis")
        return RedisCluster(
            host=Config.redis_host,
            port=Config.redis_port,
            password=Config.redis_password or None,
            ssl=Config.redis_ssl,
            decode_responses=True,
        )

    print("[REDIS] Using single-node Redis")
    return Redis(
        host=Config.redis_host,
        port=Config.redis_port,
        password=Config.redis_password or None,
        ssl=Config.redis_ssl,
        decode_responses=True,
    )


class MemorySessionCache:
    """In-process cache of serialized sessions, bounded and idle-expiring."""

    def __init__(self, ttl_seconds: Optional[int] = None, max_entries: Optional[int] = None, clock=time.time):
        self._cache = TTLCache(
            ttl_seconds or Config.session_ttl,
            max_entries=max_entries or Config.session_cache_max,
            clock=clock,
        )

    async def get(self, conversation_id) -> Optional[Dict[str, Any]]:
        return self._cache.get(conversation_id)

    async def set(self, conversation_id, payload: Dict[str, Any]) -> None:
        self._cache.set(conversation_id, payload)

    async def delete(self, conversation_id) -> None:
        self._cache.delete(conversation_id)

    async def clear(self) -> None:
        self._cache.clear()

    async def size(self) -> int:
        self._cache.purge_expired()
        return len(self._cache)

    async def purge_older_than(self, minutes: float) -> int:
        return self._cache.purge_older_than(minutes)


class RedisSessionCache:
    """
    Sessions shared between workers: one `conversation:<id>` key per session,
    written with SETEX so idle sessions expire on their own.
    """

    def __init__(self, client=None, ttl_seconds: Optional[int] = None):
        self._client = client or build_redis_client()
        self.ttl = int(ttl_seconds or Config.session_ttl)

    async def get(self, conversation_id) -> Optional[Dict[str, Any]]:
        data = await self._client.get(_key(conversation_id))
        return json.loads(data) if data else None

    async def set(self, conversation_id, payload: Dict[str, Any]) -> None:
        await self._client.setex(_key(conversation_id), self.ttl, json.dumps(payload))

    async def delete(self, conversation_id) -> None:
        await self._client.delete(_key(conversation_id))

    async def _keys(self):
        return [key async for key in self._client.scan_iter(match=f"{SESSION_PREFIX}*")]

    async def clear(self) -> None:
        for key in await self._keys():
            await self._client.delete(key)

    async def size(self) -> int:
        return len(await self._keys())

    async def purge_older_than(self, minutes: float) -> int:
        cutoff_ms = (time.time() - minutes * 60) * 1000
        removed = 0
        for key in await self._keys():
            data = await self._client.get(key)
            if not data:
                continue
            if json.loads(data).get("updated_at_ms", 0) < cutoff_ms:
                await self._client.delete(key)
                removed += 1
        return removed


def build_session_cache():
    if Config.session_backend == "redis":
        return RedisSessionCache()
    return MemorySessionCache()
