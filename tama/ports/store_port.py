"""Key-value store port — the only shared mutable resource.

Core modules depend on this protocol, never on Redis or SQLite directly.
There are no cross-key transactions: callers must tolerate half-applied
multi-key updates.
"""

from __future__ import annotations

from typing import Protocol


class StoreError(Exception):
    """Raised when the backing store cannot be reached."""


class KeyValueStore(Protocol):
    """Abstract key-value interface used by tama.data.db."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def sadd(self, key: str, member: str) -> bool: ...

    async def srem(self, key: str, member: str) -> None: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def expire(self, key: str, ttl_seconds: int) -> None: ...

    async def incr(self, key: str) -> int: ...
