"""SQLite-backed persistent store using aiosqlite.

One connection per store, serialised by an ``asyncio.Lock``.  Every write
runs in an explicit ``BEGIN IMMEDIATE`` transaction and is rolled back on
any error, so multi-row writes are all-or-nothing.  The schema itself
enforces two core rules:

- a partial unique index allows at most one session row with a NULL
  ``end_time``;
- ``hour_attributions`` is keyed by the hour bucket, so writes upsert.

Usage::

    async with SqliteStore("data/treadwear.db") as store:
        await store.save_item(item)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import UUID

import aiosqlite

from treadwear.tracking.base import HourAttribution, HourBucket, Item, LegacyEntry, Session
from treadwear.tracking.store.base import PersistentStore

logger = logging.getLogger("treadwear.tracking.store.sqlite")

BUSY_TIMEOUT_MS = 5000
MEMORY_DATABASE = ":memory:"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    item_id               TEXT PRIMARY KEY,
    brand                 TEXT NOT NULL,
    model                 TEXT NOT NULL,
    notes                 TEXT NOT NULL DEFAULT '',
    estimated_lifespan_km REAL NOT NULL CHECK (estimated_lifespan_km > 0),
    archived              INTEGER NOT NULL DEFAULT 0,
    is_default            INTEGER NOT NULL DEFAULT 0,
    created_at            TEXT NOT NULL,
    archived_at           TEXT
);

CREATE TABLE IF NOT EXISTS sessions (
    session_id   TEXT PRIMARY KEY,
    item_id      TEXT NOT NULL REFERENCES items(item_id) ON DELETE CASCADE,
    start_time   TEXT NOT NULL,
    end_time     TEXT,
    auto_started INTEGER NOT NULL DEFAULT 0,
    auto_closed  INTEGER NOT NULL DEFAULT 0,
    steps        INTEGER NOT NULL DEFAULT 0,
    distance_km  REAL NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_sessions_item ON sessions (item_id, start_time);

CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_single_active
    ON sessions (end_time IS NULL) WHERE end_time IS NULL;

CREATE TABLE IF NOT EXISTS hour_attributions (
    hour_bucket    INTEGER PRIMARY KEY,
    attribution_id TEXT NOT NULL,
    item_id        TEXT NOT NULL REFERENCES items(item_id) ON DELETE CASCADE,
    steps          INTEGER NOT NULL DEFAULT 0,
    distance_km    REAL NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_attributions_item ON hour_attributions (item_id);

CREATE TABLE IF NOT EXISTS legacy_entries (
    entry_id    TEXT PRIMARY KEY,
    item_id     TEXT NOT NULL REFERENCES items(item_id) ON DELETE CASCADE,
    start_time  TEXT NOT NULL,
    end_time    TEXT NOT NULL,
    steps       INTEGER NOT NULL DEFAULT 0,
    distance_km REAL NOT NULL DEFAULT 0
);
"""

_UPSERT_ITEM = """
INSERT INTO items (item_id, brand, model, notes, estimated_lifespan_km,
                   archived, is_default, created_at, archived_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(item_id) DO UPDATE SET
    brand = excluded.brand,
    model = excluded.model,
    notes = excluded.notes,
    estimated_lifespan_km = excluded.estimated_lifespan_km,
    archived = excluded.archived,
    is_default = excluded.is_default,
    archived_at = excluded.archived_at
"""

_UPSERT_SESSION = """
INSERT INTO sessions (session_id, item_id, start_time, end_time,
                      auto_started, auto_closed, steps, distance_km)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(session_id) DO UPDATE SET
    end_time = excluded.end_time,
    auto_closed = excluded.auto_closed,
    steps = excluded.steps,
    distance_km = excluded.distance_km
"""

_UPSERT_ATTRIBUTION = """
INSERT INTO hour_attributions (hour_bucket, attribution_id, item_id,
                               steps, distance_km, created_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(hour_bucket) DO UPDATE SET
    item_id = excluded.item_id,
    steps = excluded.steps,
    distance_km = excluded.distance_km
"""

_INSERT_LEGACY = """
INSERT INTO legacy_entries (entry_id, item_id, start_time, end_time, steps, distance_km)
VALUES (?, ?, ?, ?, ?, ?)
"""


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _item_from_row(row: aiosqlite.Row) -> Item:
    return Item(
        item_id=UUID(row["item_id"]),
        brand=row["brand"],
        model=row["model"],
        notes=row["notes"],
        estimated_lifespan_km=row["estimated_lifespan_km"],
        archived=bool(row["archived"]),
        is_default=bool(row["is_default"]),
        created_at=_parse_ts(row["created_at"]),
        archived_at=_parse_ts(row["archived_at"]),
    )


def _session_from_row(row: aiosqlite.Row) -> Session:
    return Session(
        session_id=UUID(row["session_id"]),
        item_id=UUID(row["item_id"]),
        start_time=_parse_ts(row["start_time"]),
        end_time=_parse_ts(row["end_time"]),
        auto_started=bool(row["auto_started"]),
        auto_closed=bool(row["auto_closed"]),
        steps=row["steps"],
        distance_km=row["distance_km"],
    )


def _attribution_from_row(row: aiosqlite.Row) -> HourAttribution:
    return HourAttribution(
        attribution_id=UUID(row["attribution_id"]),
        bucket=HourBucket(row["hour_bucket"]),
        item_id=UUID(row["item_id"]),
        steps=row["steps"],
        distance_km=row["distance_km"],
        created_at=_parse_ts(row["created_at"]),
    )


def _legacy_from_row(row: aiosqlite.Row) -> LegacyEntry:
    return LegacyEntry(
        entry_id=UUID(row["entry_id"]),
        item_id=UUID(row["item_id"]),
        start_time=_parse_ts(row["start_time"]),
        end_time=_parse_ts(row["end_time"]),
        steps=row["steps"],
        distance_km=row["distance_km"],
    )


class SqliteStore(PersistentStore):
    """Persistent store on a single aiosqlite connection.

    Attributes:
        db_path: Database file path, or ``":memory:"`` for a private in-memory database.
    """

    supports_transactions = True

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the connection, apply PRAGMAs and create the schema."""
        if self._connection is not None:
            logger.warning("Database connection already exists")
            return

        if self.db_path != MEMORY_DATABASE:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode: transactions are opened explicitly per write.
        self._connection = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._connection.row_factory = aiosqlite.Row
        await self._apply_pragmas()
        await self._connection.executescript(_SCHEMA)
        logger.info("Connected to tracking database: %s", self.db_path)

    async def _apply_pragmas(self) -> None:
        conn = self._ensure_connected()
        pragmas = {
            "busy_timeout": str(BUSY_TIMEOUT_MS),
            "journal_mode": "WAL" if self.db_path != MEMORY_DATABASE else "MEMORY",
            "synchronous": "NORMAL",
            "foreign_keys": "ON",
        }
        for key, value in pragmas.items():
            await conn.execute(f"PRAGMA {key}={value}")
            logger.debug("PRAGMA %s=%s applied", key, value)

    async def disconnect(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Tracking database connection closed")

    async def close(self) -> None:
        await self.disconnect()

    async def __aenter__(self) -> SqliteStore:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection not established")
        return self._connection

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = self._ensure_connected()
        async with self._lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def _fetch(self, sql: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        conn = self._ensure_connected()
        async with self._lock:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def save_items(self, items: list[Item]) -> None:
        async with self._transaction() as conn:
            await conn.executemany(
                _UPSERT_ITEM,
                [
                    (
                        str(item.item_id),
                        item.brand,
                        item.model,
                        item.notes,
                        item.estimated_lifespan_km,
                        int(item.archived),
                        int(item.is_default),
                        _ts(item.created_at),
                        _ts(item.archived_at),
                    )
                    for item in items
                ],
            )

    async def get_item(self, item_id: UUID) -> Item | None:
        rows = await self._fetch("SELECT * FROM items WHERE item_id = ?", (str(item_id),))
        return _item_from_row(rows[0]) if rows else None

    async def list_items(self, include_archived: bool = True) -> list[Item]:
        sql = "SELECT * FROM items"
        if not include_archived:
            sql += " WHERE archived = 0"
        rows = await self._fetch(sql + " ORDER BY created_at")
        return [_item_from_row(row) for row in rows]

    async def delete_item(self, item_id: UUID) -> bool:
        async with self._transaction() as conn:
            cursor = await conn.execute("DELETE FROM items WHERE item_id = ?", (str(item_id),))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def save_sessions(self, sessions: list[Session]) -> None:
        async with self._transaction() as conn:
            # Row by row: closing rows must land before the new active row.
            for session in sessions:
                await conn.execute(
                    _UPSERT_SESSION,
                    (
                        str(session.session_id),
                        str(session.item_id),
                        _ts(session.start_time),
                        _ts(session.end_time),
                        int(session.auto_started),
                        int(session.auto_closed),
                        session.steps,
                        session.distance_km,
                    ),
                )

    async def list_sessions(self, item_id: UUID | None = None) -> list[Session]:
        if item_id is None:
            rows = await self._fetch("SELECT * FROM sessions ORDER BY start_time")
        else:
            rows = await self._fetch(
                "SELECT * FROM sessions WHERE item_id = ? ORDER BY start_time",
                (str(item_id),),
            )
        return [_session_from_row(row) for row in rows]

    async def list_active_sessions(self) -> list[Session]:
        rows = await self._fetch(
            "SELECT * FROM sessions WHERE end_time IS NULL ORDER BY start_time"
        )
        return [_session_from_row(row) for row in rows]

    async def list_sessions_between(self, start: datetime, end: datetime) -> list[Session]:
        rows = await self._fetch(
            "SELECT * FROM sessions WHERE start_time < ? "
            "AND (end_time IS NULL OR end_time > ?) ORDER BY start_time",
            (_ts(end), _ts(start)),
        )
        return [_session_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Hour attributions
    # ------------------------------------------------------------------

    async def upsert_attributions(self, attributions: list[HourAttribution]) -> None:
        async with self._transaction() as conn:
            await conn.executemany(
                _UPSERT_ATTRIBUTION,
                [
                    (
                        a.bucket.epoch_seconds,
                        str(a.attribution_id),
                        str(a.item_id),
                        a.steps,
                        a.distance_km,
                        _ts(a.created_at),
                    )
                    for a in attributions
                ],
            )

    async def get_attribution(self, bucket: HourBucket) -> HourAttribution | None:
        rows = await self._fetch(
            "SELECT * FROM hour_attributions WHERE hour_bucket = ?", (bucket.epoch_seconds,)
        )
        return _attribution_from_row(rows[0]) if rows else None

    async def delete_attributions(self, buckets: list[HourBucket]) -> int:
        removed = 0
        async with self._transaction() as conn:
            for bucket in set(buckets):
                cursor = await conn.execute(
                    "DELETE FROM hour_attributions WHERE hour_bucket = ?",
                    (bucket.epoch_seconds,),
                )
                removed += cursor.rowcount
        return removed

    async def list_attributions(
        self,
        item_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[HourAttribution]:
        clauses: list[str] = []
        params: list[Any] = []
        if item_id is not None:
            clauses.append("item_id = ?")
            params.append(str(item_id))
        if start is not None:
            clauses.append("hour_bucket >= ?")
            params.append(start.timestamp())
        if end is not None:
            clauses.append("hour_bucket < ?")
            params.append(end.timestamp())
        sql = "SELECT * FROM hour_attributions"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        rows = await self._fetch(sql + " ORDER BY hour_bucket", tuple(params))
        return [_attribution_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Legacy entries
    # ------------------------------------------------------------------

    async def add_legacy_entries(self, entries: list[LegacyEntry]) -> None:
        async with self._transaction() as conn:
            await conn.executemany(
                _INSERT_LEGACY,
                [
                    (
                        str(e.entry_id),
                        str(e.item_id),
                        _ts(e.start_time),
                        _ts(e.end_time),
                        e.steps,
                        e.distance_km,
                    )
                    for e in entries
                ],
            )

    async def list_legacy_entries(self, item_id: UUID | None = None) -> list[LegacyEntry]:
        if item_id is None:
            rows = await self._fetch("SELECT * FROM legacy_entries ORDER BY start_time")
        else:
            rows = await self._fetch(
                "SELECT * FROM legacy_entries WHERE item_id = ? ORDER BY start_time",
                (str(item_id),),
            )
        return [_legacy_from_row(row) for row in rows]
