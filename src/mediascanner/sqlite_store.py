"""RecordStore persisted in SQLite.

Documents are stored as JSON in `records`; thumbnails and other
attachments live in `attachments` as BLOBs. Removing a record leaves a
tombstone row (deleted = 1) carrying the deletion revision.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import aiosqlite

from mediascanner.models import Attachment, MediaRecord
from mediascanner.store import (
    BulkResult,
    ChangeBroadcaster,
    ChangeFeed,
    RecordConflictError,
    RecordNotFoundError,
    next_revision,
)

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS records (
        id TEXT PRIMARY KEY,
        rev TEXT NOT NULL,
        deleted INTEGER NOT NULL DEFAULT 0,
        doc TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attachments (
        record_id TEXT NOT NULL,
        name TEXT NOT NULL,
        content_type TEXT NOT NULL,
        data BLOB NOT NULL,
        PRIMARY KEY (record_id, name)
    )
    """,
)


class SqliteRecordStore:
    """RecordStore backed by an SQLite database file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = asyncio.Lock()
        self._changes = ChangeBroadcaster()
        self._initialized = False

    async def initialize(self) -> None:
        """Create the tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
        self._initialized = True
        logger.info("Record store ready: %s", self.db_path)

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def _load_attachments(
        self, db: aiosqlite.Connection, record_id: str
    ) -> dict[str, Attachment]:
        async with db.execute(
            "SELECT name, content_type, data FROM attachments WHERE record_id = ?",
            (record_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return {
            name: Attachment(content_type=content_type, data=bytes(data))
            for name, content_type, data in rows
        }

    async def get(self, record_id: str) -> MediaRecord:
        await self._ensure_initialized()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT rev, doc FROM records WHERE id = ? AND deleted = 0",
                (record_id,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise RecordNotFoundError(record_id)
            attachments = await self._load_attachments(db, record_id)

        rev, doc = row
        return MediaRecord.from_dict(json.loads(doc), rev=rev, attachments=attachments)

    async def _current(self, db: aiosqlite.Connection, record_id: str) -> tuple[str, bool] | None:
        async with db.execute(
            "SELECT rev, deleted FROM records WHERE id = ?", (record_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return row[0], bool(row[1])

    async def put(self, record: MediaRecord) -> str:
        await self._ensure_initialized()
        async with self._lock:
            async with aiosqlite.connect(self.db_path) as db:
                current = await self._current(db, record.id)
                previous = current[0] if current else None
                deleted = current[1] if current else True
                if not deleted and record.rev != previous:
                    raise RecordConflictError(f"Document update conflict for {record.id}")
                if deleted and record.rev is not None and record.rev != previous:
                    raise RecordConflictError(f"Document update conflict for {record.id}")

                rev = next_revision(previous)
                await db.execute(
                    "INSERT OR REPLACE INTO records (id, rev, deleted, doc) VALUES (?, ?, 0, ?)",
                    (record.id, rev, json.dumps(record.to_dict(), ensure_ascii=False)),
                )
                await db.execute("DELETE FROM attachments WHERE record_id = ?", (record.id,))
                for name, attachment in record.attachments.items():
                    await db.execute(
                        "INSERT INTO attachments (record_id, name, content_type, data) "
                        "VALUES (?, ?, ?, ?)",
                        (record.id, name, attachment.content_type, attachment.data),
                    )
                await db.commit()

            stored = MediaRecord.from_dict(record.to_dict(), rev=rev)
            self._changes.publish(record.id, stored)
        return rev

    async def _remove(self, db: aiosqlite.Connection, record: MediaRecord) -> None:
        current = await self._current(db, record.id)
        if current is None or current[1]:
            raise RecordNotFoundError(record.id)
        if record.rev != current[0]:
            raise RecordConflictError(f"Document update conflict for {record.id}")

        await db.execute(
            "UPDATE records SET rev = ?, deleted = 1, doc = NULL WHERE id = ?",
            (next_revision(current[0]), record.id),
        )
        await db.execute("DELETE FROM attachments WHERE record_id = ?", (record.id,))

    async def remove(self, record: MediaRecord) -> None:
        await self._ensure_initialized()
        async with self._lock:
            async with aiosqlite.connect(self.db_path) as db:
                await self._remove(db, record)
                await db.commit()
            self._changes.publish(record.id, None)

    async def list_page(self, start_after: str | None, limit: int) -> list[MediaRecord]:
        await self._ensure_initialized()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT id, rev, doc FROM records "
                "WHERE deleted = 0 AND id > ? ORDER BY id LIMIT ?",
                (start_after or "", limit),
            ) as cursor:
                rows = await cursor.fetchall()
        return [
            MediaRecord.from_dict(json.loads(doc), rev=rev)
            for _, rev, doc in rows
        ]

    async def bulk_delete(self, records: list[MediaRecord]) -> list[BulkResult]:
        await self._ensure_initialized()
        results: list[BulkResult] = []
        async with self._lock:
            async with aiosqlite.connect(self.db_path) as db:
                for record in records:
                    try:
                        await self._remove(db, record)
                    except (RecordNotFoundError, RecordConflictError) as e:
                        results.append(BulkResult(id=record.id, error=type(e).__name__))
                    else:
                        results.append(BulkResult(id=record.id))
                await db.commit()
            for result in results:
                if result.ok:
                    self._changes.publish(result.id, None)
        return results

    def subscribe_changes(self) -> ChangeFeed:
        return self._changes.subscribe()

    async def close(self) -> None:
        self._changes.close_all()
