"""Record store interface, live change feed, and an in-memory store."""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, replace
from typing import Protocol

from mediascanner.models import MediaRecord

logger = logging.getLogger(__name__)


class RecordNotFoundError(KeyError):
    """No live record exists for the identifier."""


class RecordConflictError(RuntimeError):
    """The record's revision does not match the stored revision."""


@dataclass(frozen=True)
class ChangeEvent:
    """One committed change. `record` is None for deletions."""

    id: str
    deleted: bool
    record: MediaRecord | None = None


@dataclass(frozen=True)
class BulkResult:
    id: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ChangeFeed:
    """Live subscription to committed changes, starting from "now".

    Iterate with ``async for``; iteration ends once the feed is closed.
    """

    def __init__(self, broadcaster: ChangeBroadcaster) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
        self._closed = False

    def push(self, event: ChangeEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broadcaster.unsubscribe(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> ChangeFeed:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> ChangeFeed:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class ChangeBroadcaster:
    """Fans committed changes out to every open ChangeFeed, in commit order."""

    def __init__(self) -> None:
        self._feeds: list[ChangeFeed] = []

    def subscribe(self) -> ChangeFeed:
        feed = ChangeFeed(self)
        self._feeds.append(feed)
        return feed

    def unsubscribe(self, feed: ChangeFeed) -> None:
        if feed in self._feeds:
            self._feeds.remove(feed)

    def close_all(self) -> None:
        for feed in list(self._feeds):
            feed.close()

    def publish(self, record_id: str, record: MediaRecord | None) -> None:
        # Feeds never carry attachment bodies
        event = ChangeEvent(
            id=record_id,
            deleted=record is None,
            record=replace(record, attachments={}) if record is not None else None,
        )
        for feed in list(self._feeds):
            feed.push(event)


class RecordStore(Protocol):
    """Document store consumed by the pipeline, the sweeper and the watchdog."""

    async def get(self, record_id: str) -> MediaRecord: ...

    async def put(self, record: MediaRecord) -> str: ...

    async def remove(self, record: MediaRecord) -> None: ...

    async def list_page(self, start_after: str | None, limit: int) -> list[MediaRecord]: ...

    async def bulk_delete(self, records: list[MediaRecord]) -> list[BulkResult]: ...

    def subscribe_changes(self) -> ChangeFeed: ...

    async def close(self) -> None: ...


def next_revision(previous: str | None) -> str:
    """Return the revision following `previous` ("<generation>-<random hex>")."""
    generation = 0
    if previous:
        generation = int(previous.split("-", 1)[0])
    return f"{generation + 1}-{secrets.token_hex(16)}"


def _copy(record: MediaRecord) -> MediaRecord:
    return replace(record, attachments=dict(record.attachments))


class MemoryRecordStore:
    """RecordStore kept in process memory. Deleted records leave a tombstone revision."""

    def __init__(self) -> None:
        self._records: dict[str, MediaRecord] = {}
        self._tombstones: dict[str, str] = {}
        self._changes = ChangeBroadcaster()

    async def get(self, record_id: str) -> MediaRecord:
        record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return _copy(record)

    async def put(self, record: MediaRecord) -> str:
        current = self._records.get(record.id)
        if current is not None:
            previous = current.rev
            if record.rev != previous:
                raise RecordConflictError(f"Document update conflict for {record.id}")
        else:
            # A deleted id may be recreated without a revision
            previous = self._tombstones.get(record.id)
            if record.rev is not None and record.rev != previous:
                raise RecordConflictError(f"Document update conflict for {record.id}")

        rev = next_revision(previous)
        stored = replace(_copy(record), rev=rev)
        self._records[record.id] = stored
        self._tombstones.pop(record.id, None)
        self._changes.publish(record.id, stored)
        return rev

    async def remove(self, record: MediaRecord) -> None:
        current = self._records.get(record.id)
        if current is None:
            raise RecordNotFoundError(record.id)
        if record.rev != current.rev:
            raise RecordConflictError(f"Document update conflict for {record.id}")

        del self._records[record.id]
        self._tombstones[record.id] = next_revision(current.rev)
        self._changes.publish(record.id, None)

    async def list_page(self, start_after: str | None, limit: int) -> list[MediaRecord]:
        ids = sorted(i for i in self._records if start_after is None or i > start_after)
        return [_copy(self._records[i]) for i in ids[:limit]]

    async def bulk_delete(self, records: list[MediaRecord]) -> list[BulkResult]:
        results: list[BulkResult] = []
        for record in records:
            try:
                await self.remove(record)
            except (RecordNotFoundError, RecordConflictError) as e:
                results.append(BulkResult(id=record.id, error=type(e).__name__))
            else:
                results.append(BulkResult(id=record.id))
        return results

    def subscribe_changes(self) -> ChangeFeed:
        return self._changes.subscribe()

    async def close(self) -> None:
        self._changes.close_all()
