"""Scan pipeline: one ordered consumer turning file events into records."""

from __future__ import annotations

import asyncio
import logging
import os
import stat as stat_module
from collections.abc import Awaitable
from datetime import datetime, timezone
from pathlib import Path

from mediascanner.context import ScannerContext
from mediascanner.models import MediaRecord
from mediascanner.paths import get_dir_prefix, get_id, is_under_root
from mediascanner.prober import MetadataExtractor
from mediascanner.store import RecordConflictError, RecordNotFoundError
from mediascanner.thumbnailer import ThumbnailGenerator
from mediascanner.watcher import FileEvent

logger = logging.getLogger(__name__)

SCANNED = "scanned"
UNCHANGED = "unchanged"
SKIPPED = "skipped"
REMOVED = "removed"
IGNORED = "ignored"
FAILED = "failed"

_PAGE_SIZE = 256


def _mtime_ms(st: os.stat_result) -> int:
    return st.st_mtime_ns // 1_000_000


class ScanPipeline:
    """Consumes FileEvents strictly in arrival order.

    Within one event, metadata extraction and thumbnailing run concurrently
    against the same record (they write disjoint fields) and both finish
    before the record is written.
    """

    def __init__(
        self,
        context: ScannerContext,
        queue: asyncio.Queue[FileEvent],
        extractor: MetadataExtractor | None = None,
        thumbnailer: ThumbnailGenerator | None = None,
    ) -> None:
        self.context = context
        self.queue = queue
        self.extractor = extractor or MetadataExtractor(context.config)
        self.thumbnailer = thumbnailer or ThumbnailGenerator(context.config)

    async def run(self) -> None:
        """Drain the queue forever, one event at a time."""
        while True:
            event = await self.queue.get()
            try:
                await self.handle(event)
            finally:
                self.queue.task_done()

    async def handle(self, event: FileEvent) -> str:
        """Apply one event. Errors are logged, never raised."""
        if event.directory:
            try:
                return await self.remove_tree(event.path)
            except Exception:
                logger.exception("Failed to process removed directory %s", event.path)
                return FAILED

        try:
            media_id = get_id(self.context.config.media_root, event.path)
        except ValueError:
            logger.warning("Outside media root, ignoring: %s", event.path)
            return IGNORED

        if not media_id:
            return IGNORED

        try:
            if event.stat is None:
                return await self.remove(media_id)
            return await self.scan_file(str(event.path), media_id, event.stat)
        except Exception:
            logger.exception("Failed to process %s (%s)", event.path, media_id)
            return FAILED

    async def remove(self, media_id: str) -> str:
        store = self.context.store
        try:
            record = await store.get(media_id)
        except RecordNotFoundError:
            logger.debug("Nothing stored for removed %s", media_id)
            return IGNORED
        await store.remove(record)
        logger.info("Removed %s (%s)", media_id, record.media_path)
        return REMOVED

    async def remove_tree(self, dir_path: Path) -> str:
        """Remove every record for a file that was under dir_path.

        Ids under a directory share its prefix, so only that key range is
        paged through.
        """
        try:
            prefix = get_dir_prefix(self.context.config.media_root, dir_path)
        except ValueError:
            logger.warning("Outside media root, ignoring: %s", dir_path)
            return IGNORED

        store = self.context.store
        removed = 0
        start_after = prefix[:-1] or None
        while True:
            page = await store.list_page(start_after, _PAGE_SIZE)
            past_prefix = False
            for record in page:
                if not record.id.startswith(prefix):
                    if record.id > prefix:
                        past_prefix = True
                        break
                    continue
                if not record.media_path or not is_under_root(dir_path, record.media_path):
                    continue
                try:
                    await store.remove(record)
                except (RecordNotFoundError, RecordConflictError) as e:
                    logger.warning("Could not remove %s: %s", record.id, e)
                    continue
                removed += 1

            if past_prefix or len(page) < _PAGE_SIZE:
                break
            start_after = page[-1].id

        logger.info("Removed %d records under %s", removed, dir_path)
        return REMOVED if removed else IGNORED

    async def _load(self, media_id: str) -> MediaRecord:
        try:
            return await self.context.store.get(media_id)
        except RecordNotFoundError:
            return MediaRecord(id=media_id)

    async def scan_file(self, media_path: str, media_id: str, st: os.stat_result) -> str:
        if stat_module.S_ISDIR(st.st_mode):
            return IGNORED

        record = await self._load(media_id)
        context = (
            f"id={media_id} path={media_path} size={st.st_size} "
            f"mtime={datetime.fromtimestamp(st.st_mtime, timezone.utc).isoformat()}"
        )

        if record.media_path and record.media_path != media_path:
            logger.info(
                "Skipped %s: id already belongs to %s", context, record.media_path
            )
            return SKIPPED

        mtime = _mtime_ms(st)
        if record.media_size == st.st_size and record.media_time == mtime:
            return UNCHANGED

        record.media_path = media_path
        record.media_size = st.st_size
        record.media_time = mtime

        await asyncio.gather(
            self._enrich(self.extractor.extract(record), "Info failed", context),
            self._enrich(self.thumbnailer.generate(record), "Thumbnail failed", context),
        )

        await self.context.store.put(record)
        logger.info("Scanned %s", context)
        return SCANNED

    @staticmethod
    async def _enrich(step: Awaitable[None], label: str, context: str) -> None:
        try:
            await step
        except Exception as e:
            logger.error("%s for %s: %s", label, context, e)
