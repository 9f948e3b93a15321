"""Reconciliation sweep: drop records whose file is gone."""

from __future__ import annotations

import asyncio
import logging
import os

from mediascanner.context import ScannerContext
from mediascanner.models import MediaRecord
from mediascanner.paths import is_under_root

logger = logging.getLogger(__name__)

PAGE_SIZE = 256


class ReconciliationSweeper:
    """Walks every stored record page by page and deletes dead ones.

    A record survives only if its media path lies under the media root and
    the file still exists. Each page's deletions go out as one bulk delete.
    """

    def __init__(self, context: ScannerContext, page_size: int = PAGE_SIZE) -> None:
        self.context = context
        self.page_size = page_size

    async def _is_alive(self, record: MediaRecord) -> bool:
        media_path = record.media_path
        if not media_path:
            return False
        if not is_under_root(self.context.config.media_root, os.path.normpath(media_path)):
            return False
        return await asyncio.to_thread(os.path.exists, media_path)

    async def _check(self, record: MediaRecord) -> MediaRecord | None:
        """Return the record if it should be deleted."""
        try:
            if await self._is_alive(record):
                return None
        except Exception:
            logger.exception("Could not check %s (%s)", record.id, record.media_path)
            return None
        return record

    async def sweep(self) -> int:
        """Run one full pass and return the number of records deleted."""
        logger.info("Checking for dead media")
        store = self.context.store
        deleted_total = 0
        start_after: str | None = None

        while True:
            rows = await store.list_page(start_after, self.page_size)
            checked = await asyncio.gather(*(self._check(r) for r in rows))
            dead = [r for r in checked if r is not None]

            if dead:
                results = await store.bulk_delete(dead)
                for result in results:
                    if result.ok:
                        deleted_total += 1
                    else:
                        logger.warning("Could not delete %s: %s", result.id, result.error)
                logger.info("Removed %d dead records", sum(r.ok for r in results))

            if len(rows) < self.page_size:
                break
            start_after = rows[-1].id

        logger.info("Finished check for dead media (%d removed)", deleted_total)
        return deleted_total

    async def run_periodically(self, interval: float) -> None:
        """Sweep every `interval` seconds. Errors are logged and the loop continues."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Reconciliation sweep failed")
