"""Store adapter factory — creates the right key-value backend based on config."""

from __future__ import annotations

from tama.config import settings
from tama.ports.store_port import KeyValueStore


def create_store(backend: str | None = None) -> KeyValueStore:
    """Return the key-value adapter matching the STORE_BACKEND setting."""
    backend = (backend or settings.STORE_BACKEND).lower()

    if backend == "redis":
        from tama.adapters.redis_store import RedisStore

        return RedisStore.from_url(settings.REDIS_URL)

    if backend == "sqlite":
        from tama.adapters.sqlite_store import SqliteStore

        return SqliteStore(db_path=settings.DATABASE_PATH)

    raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")
