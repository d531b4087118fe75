from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set, TypeVar, Union

from .errors import CacheReadFailure, CacheWriteFailure, StoreOpenFailure
from .models import AlertSchedule, CachedResource, ResourceKey

_ACTIVE_VERSION = "cache.active_version"
_ALERT_SCHEDULE = "schedule.alert_time"

T = TypeVar("T")


class _SqliteStore:
    """Shared connection handling for stores living in the cache database."""

    def __init__(self, db_path: Path | str = Path("data/cache.db")) -> None:
        self.db_path = Path(db_path)
        self._ready = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        if self._ready:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_versions (
                    version TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS resources (
                    version TEXT NOT NULL,
                    method TEXT NOT NULL,
                    url TEXT NOT NULL,
                    meta TEXT NOT NULL,
                    body BLOB NOT NULL,
                    PRIMARY KEY (version, method, url)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS preferences (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
        self._ready = True

    def _get_preference(self, name: str) -> Optional[str]:
        self._ensure_schema()
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM preferences WHERE name = ?", (name,)).fetchone()
        return row[0] if row else None

    def _set_preference(self, name: str, value: Optional[str]) -> None:
        self._ensure_schema()
        with self._connect() as conn:
            if value is None:
                conn.execute("DELETE FROM preferences WHERE name = ?", (name,))
            else:
                conn.execute(
                    "INSERT OR REPLACE INTO preferences (name, value) VALUES (?, ?)",
                    (name, value),
                )


@dataclass(eq=False)
class ResourceTable:
    """Handle on the resources stored under one cache version."""

    version: str
    store: "CacheStore" = field(repr=False)

    async def get(self, key: ResourceKey) -> Optional[CachedResource]:
        return await self.store.get(self, key)

    async def put(self, key: ResourceKey, resource: CachedResource) -> None:
        await self.store.put(self, key, resource)

    async def keys(self) -> List[ResourceKey]:
        return await self.store.keys(self)


class CacheStore(_SqliteStore):
    """Versioned resource tables persisted to a SQLite database.

    Every public method is a coroutine; the blocking SQLite calls run on a
    worker thread so a request task yields while the store does I/O.
    """

    def __init__(self, db_path: Path | str = Path("data/cache.db")) -> None:
        super().__init__(db_path)
        self._tables: Dict[str, ResourceTable] = {}

    async def _run(self, version: str, func: Callable[..., T], *args: object) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except (sqlite3.Error, OSError) as exc:
            raise StoreOpenFailure(version, str(exc)) from exc

    async def open(self, version: str) -> ResourceTable:
        await self._run(version, self._open_sync, version)
        table = self._tables.get(version)
        if table is None:
            table = ResourceTable(version=version, store=self)
            self._tables[version] = table
        return table

    async def get(self, table: ResourceTable, key: ResourceKey) -> Optional[CachedResource]:
        try:
            return await asyncio.to_thread(self._get_sync, table.version, key)
        except (sqlite3.Error, OSError, ValueError, TypeError) as exc:
            raise CacheReadFailure(table.version, key.url, str(exc)) from exc

    async def put(self, table: ResourceTable, key: ResourceKey, resource: CachedResource) -> None:
        try:
            stored = await asyncio.to_thread(self._put_sync, table.version, key, resource)
        except (sqlite3.Error, OSError) as exc:
            raise CacheWriteFailure(table.version, key.url, str(exc)) from exc
        if not stored:
            raise CacheWriteFailure(table.version, key.url, "cache version was deleted")

    async def delete(self, table: Union[ResourceTable, str]) -> bool:
        version = table.version if isinstance(table, ResourceTable) else table
        deleted = await self._run(version, self._delete_sync, version)
        self._tables.pop(version, None)
        return deleted

    async def list_versions(self) -> Set[str]:
        return await self._run("*", self._list_versions_sync)

    async def keys(self, table: ResourceTable) -> List[ResourceKey]:
        return await self._run(table.version, self._keys_sync, table.version)

    async def clear_all(self) -> List[str]:
        versions = sorted(await self.list_versions())
        for version in versions:
            await self.delete(version)
        await self.set_active_version(None)
        return versions

    async def get_active_version(self) -> Optional[str]:
        return await self._run("*", self._get_preference, _ACTIVE_VERSION)

    async def set_active_version(self, version: Optional[str]) -> None:
        await self._run(version or "*", self._set_preference, _ACTIVE_VERSION, version)

    def _open_sync(self, version: str) -> None:
        self._ensure_schema()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO cache_versions (version, created_at) VALUES (?, ?)",
                (version, datetime.now(timezone.utc).isoformat()),
            )

    def _get_sync(self, version: str, key: ResourceKey) -> Optional[CachedResource]:
        self._ensure_schema()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT meta, body FROM resources WHERE version = ? AND method = ? AND url = ?",
                (version, key.method, key.url),
            ).fetchone()
        if not row:
            return None
        meta, body = row
        return CachedResource.from_dict(json.loads(meta), bytes(body))

    def _put_sync(self, version: str, key: ResourceKey, resource: CachedResource) -> bool:
        self._ensure_schema()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR REPLACE INTO resources (version, method, url, meta, body)
                SELECT ?, ?, ?, ?, ?
                WHERE EXISTS (SELECT 1 FROM cache_versions WHERE version = ?)
                """,
                (
                    version,
                    key.method,
                    key.url,
                    json.dumps(resource.to_dict()),
                    sqlite3.Binary(resource.body),
                    version,
                ),
            )
            return cursor.rowcount > 0

    def _delete_sync(self, version: str) -> bool:
        self._ensure_schema()
        with self._connect() as conn:
            conn.execute("DELETE FROM resources WHERE version = ?", (version,))
            deleted = conn.execute(
                "DELETE FROM cache_versions WHERE version = ?", (version,)
            ).rowcount
        return deleted > 0

    def _list_versions_sync(self) -> Set[str]:
        self._ensure_schema()
        with self._connect() as conn:
            rows = conn.execute("SELECT version FROM cache_versions").fetchall()
        return {row[0] for row in rows}

    def _keys_sync(self, version: str) -> List[ResourceKey]:
        self._ensure_schema()
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT method, url FROM resources WHERE version = ? ORDER BY url, method",
                (version,),
            ).fetchall()
        return [ResourceKey(method=method, url=url) for method, url in rows]


class PreferenceStore(_SqliteStore):
    """Small settings persisted next to the cache tables."""

    async def get_schedule(self) -> Optional[AlertSchedule]:
        value = await asyncio.to_thread(self._get_preference, _ALERT_SCHEDULE)
        if value is None:
            return None
        return AlertSchedule.parse(value)

    async def set_schedule(self, schedule: Optional[AlertSchedule]) -> None:
        value = str(schedule) if schedule is not None else None
        await asyncio.to_thread(self._set_preference, _ALERT_SCHEDULE, value)
