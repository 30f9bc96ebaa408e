from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aiosqlite
import asyncpg
import redis.asyncio as redis
from redis.exceptions import RedisError

from core.config import StorageConfig
from core.errors import StorageError
from database.base import Database
from database.migrations.runner import run_migrations

LOGGER = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Key/value store holding one serialized collection per key."""

    async def connect(self) -> None: ...
    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def close(self) -> None: ...


class MemoryStorage(StorageBackend):
    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        return None

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._store.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._store[key] = value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def close(self) -> None:
        self._store.clear()


_DATABASE_ERRORS = (aiosqlite.Error, asyncpg.PostgresError, OSError)


class DatabaseStorage(StorageBackend):
    def __init__(self, db: Database) -> None:
        self.db = db

    async def connect(self) -> None:
        try:
            await self.db.connect()
            await run_migrations(self.db)
        except _DATABASE_ERRORS as exc:
            raise StorageError(f"Could not open ticket database: {exc}") from exc

    async def get(self, key: str) -> str | None:
        try:
            row = await self.db.fetchone("SELECT value FROM collections WHERE key = ?;", [key])
        except _DATABASE_ERRORS as exc:
            raise StorageError(f"Failed to read collection {key!r}: {exc}") from exc
        return str(row["value"]) if row else None

    async def set(self, key: str, value: str) -> None:
        try:
            await self.db.execute(
                """
                INSERT INTO collections(key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP;
                """,
                [key, value],
            )
        except _DATABASE_ERRORS as exc:
            raise StorageError(f"Failed to write collection {key!r}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self.db.execute("DELETE FROM collections WHERE key = ?;", [key])
        except _DATABASE_ERRORS as exc:
            raise StorageError(f"Failed to delete collection {key!r}: {exc}") from exc

    async def close(self) -> None:
        await self.db.close()


class RedisStorage(StorageBackend):
    def __init__(self, url: str, namespace: str = "tracker") -> None:
        self._client = redis.from_url(url, decode_responses=True)
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def connect(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise StorageError(f"Redis is unreachable: {exc}") from exc

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(self._key(key))
        except RedisError as exc:
            raise StorageError(f"Failed to read collection {key!r}: {exc}") from exc

    async def set(self, key: str, value: str) -> None:
        try:
            await self._client.set(self._key(key), value)
        except RedisError as exc:
            raise StorageError(f"Failed to write collection {key!r}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            raise StorageError(f"Failed to delete collection {key!r}: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()


def build_storage(config: StorageConfig) -> StorageBackend:
    if config.backend == "memory":
        LOGGER.warning("Using in-memory storage; tickets are lost on restart")
        return MemoryStorage()
    if config.backend == "redis":
        return RedisStorage(config.redis_url)
    return DatabaseStorage(
        Database(
            url=config.database_url,
            timeout_seconds=config.timeout_seconds,
            pool_min_size=config.pool_min_size,
            pool_max_size=config.pool_max_size,
        )
    )
