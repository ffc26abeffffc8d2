"""Redis key-value adapter — implements KeyValueStore.

Production backend: every webhook invocation is stateless, so all
coordination state (tasks, indexes, follow-ups, flags) lives here.
"""

from __future__ import annotations

import logging
from typing import Awaitable, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from tama.ports.store_port import StoreError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class RedisStore:
    """Redis implementation of KeyValueStore."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisStore:
        return cls(redis.from_url(url, decode_responses=True, encoding="utf-8"))

    async def _run(self, op: str, key: str, awaitable: Awaitable[_T]) -> _T:
        try:
            return await awaitable
        except RedisError as exc:
            logger.error("Redis %s failed for %s: %s", op, key, exc)
            raise StoreError(f"Redis {op} failed for {key}") from exc

    async def get(self, key: str) -> str | None:
        return await self._run("GET", key, self._client.get(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._run("SET", key, self._client.set(key, value, ex=ttl_seconds))

    async def delete(self, key: str) -> None:
        await self._run("DEL", key, self._client.delete(key))

    async def sadd(self, key: str, member: str) -> bool:
        added = await self._run("SADD", key, self._client.sadd(key, member))
        return bool(added)

    async def srem(self, key: str, member: str) -> None:
        await self._run("SREM", key, self._client.srem(key, member))

    async def smembers(self, key: str) -> set[str]:
        members = await self._run("SMEMBERS", key, self._client.smembers(key))
        return set(members or ())

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self._run("EXPIRE", key, self._client.expire(key, ttl_seconds))

    async def incr(self, key: str) -> int:
        return int(await self._run("INCR", key, self._client.incr(key)))

    async def aclose(self) -> None:
        await self._client.aclose()
