from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import aiosqlite
import asyncpg

LOGGER = logging.getLogger(__name__)

FetchMode = Literal["none", "one", "all"]

_PLACEHOLDER = re.compile(r"\?")


@dataclass(slots=True)
class DatabaseDsn:
    driver: str
    value: str


def parse_database_dsn(url: str) -> DatabaseDsn:
    if url.startswith("sqlite:///"):
        return DatabaseDsn(driver="sqlite", value=url.removeprefix("sqlite:///"))
    if url.startswith(("postgresql://", "postgres://")):
        return DatabaseDsn(driver="postgresql", value=url)
    raise ValueError("Unsupported database URL. Use sqlite:/// or postgresql://")


def _qmark_to_dollar(query: str) -> str:
    counter = iter(range(1, query.count("?") + 1))
    return _PLACEHOLDER.sub(lambda _: f"${next(counter)}", query)


class Database:
    """Async adapter over SQLite (aiosqlite) or PostgreSQL (asyncpg).

    Queries use ``?`` placeholders; they are rewritten to ``$n`` for asyncpg.
    SQLite access goes through one connection guarded by a lock, PostgreSQL
    through a small pool.
    """

    def __init__(self, url: str, timeout_seconds: int = 30, pool_min_size: int = 1, pool_max_size: int = 5) -> None:
        self._dsn = parse_database_dsn(url)
        self._timeout_seconds = timeout_seconds
        self._pool_min_size = pool_min_size
        self._pool_max_size = pool_max_size
        self._sqlite: aiosqlite.Connection | None = None
        self._pg_pool: asyncpg.Pool | None = None
        self._sqlite_lock = asyncio.Lock()

    @property
    def driver(self) -> str:
        return self._dsn.driver

    @property
    def is_connected(self) -> bool:
        return self._sqlite is not None or self._pg_pool is not None

    async def connect(self) -> None:
        if self.is_connected:
            return
        if self.driver == "sqlite":
            await self._connect_sqlite(Path(self._dsn.value))
        else:
            self._pg_pool = await asyncpg.create_pool(
                dsn=self._dsn.value,
                min_size=self._pool_min_size,
                max_size=self._pool_max_size,
                timeout=self._timeout_seconds,
            )
            LOGGER.info("Connected to PostgreSQL")

    async def _connect_sqlite(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        connection = await aiosqlite.connect(path, timeout=self._timeout_seconds)
        connection.row_factory = aiosqlite.Row
        await connection.execute("PRAGMA journal_mode = WAL;")
        await connection.commit()
        self._sqlite = connection
        LOGGER.info("Connected to SQLite: %s", path)

    async def close(self) -> None:
        if self._sqlite is not None:
            await self._sqlite.close()
            self._sqlite = None
        if self._pg_pool is not None:
            await self._pg_pool.close()
            self._pg_pool = None

    async def _run_sqlite(self, query: str, params: Sequence[Any], mode: FetchMode) -> Any:
        if self._sqlite is None:
            raise RuntimeError("Database is not connected")
        async with self._sqlite_lock:
            cursor = await self._sqlite.execute(query, tuple(params))
            if mode == "one":
                row = await cursor.fetchone()
                return dict(row) if row is not None else None
            if mode == "all":
                return [dict(row) for row in await cursor.fetchall()]
            await self._sqlite.commit()
            return None

    async def _run_postgres(self, query: str, params: Sequence[Any], mode: FetchMode) -> Any:
        if self._pg_pool is None:
            raise RuntimeError("Database is not connected")
        statement = _qmark_to_dollar(query)
        async with self._pg_pool.acquire() as conn:
            if mode == "one":
                row = await conn.fetchrow(statement, *params)
                return dict(row) if row is not None else None
            if mode == "all":
                return [dict(row) for row in await conn.fetch(statement, *params)]
            await conn.execute(statement, *params)
            return None

    async def _run(self, query: str, params: Sequence[Any] | None, mode: FetchMode) -> Any:
        runner = self._run_sqlite if self.driver == "sqlite" else self._run_postgres
        return await runner(query, params or (), mode)

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> None:
        await self._run(query, params, "none")

    async def fetchone(self, query: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        return await self._run(query, params, "one")

    async def fetchall(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        return await self._run(query, params, "all")

    async def executescript(self, sql_script: str) -> None:
        if self.driver == "sqlite":
            if self._sqlite is None:
                raise RuntimeError("Database is not connected")
            async with self._sqlite_lock:
                await self._sqlite.executescript(sql_script)
                await self._sqlite.commit()
            return
        if self._pg_pool is None:
            raise RuntimeError("Database is not connected")
        async with self._pg_pool.acquire() as conn:
            await conn.execute(sql_script)
