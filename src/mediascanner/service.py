"""Process wiring: startup sweep, watcher, pipeline, watchdog."""

from __future__ import annotations

import asyncio
import logging

from mediascanner.config import ScannerConfig
from mediascanner.context import ScannerContext
from mediascanner.liveness import WatchDog
from mediascanner.pipeline import ScanPipeline
from mediascanner.sqlite_store import SqliteRecordStore
from mediascanner.store import RecordStore
from mediascanner.sweeper import ReconciliationSweeper
from mediascanner.watcher import FileEvent, MediaWatcher

logger = logging.getLogger(__name__)


def open_store(config: ScannerConfig) -> SqliteRecordStore:
    return SqliteRecordStore(config.db_path)


async def serve(context: ScannerContext) -> None:
    """Run the scanner until cancelled.

    Records for files deleted while the process was down are purged before
    live watching begins.
    """
    config = context.config
    sweeper = ReconciliationSweeper(context)
    try:
        await sweeper.sweep()
    except Exception:
        logger.exception("Startup reconciliation sweep failed")

    queue: asyncio.Queue[FileEvent] = asyncio.Queue(maxsize=config.queue_size)
    pipeline = ScanPipeline(context, queue)
    watcher = MediaWatcher(
        config.media_root,
        queue,
        stability_threshold=config.stability_threshold,
        poll_interval=config.poll_interval,
    )
    watchdog = WatchDog(context)

    tasks = [
        asyncio.create_task(pipeline.run(), name="pipeline"),
        asyncio.create_task(watchdog.run(), name="watchdog"),
    ]
    if config.sweep_interval > 0:
        tasks.append(asyncio.create_task(
            sweeper.run_periodically(config.sweep_interval), name="sweeper"
        ))

    await watcher.start()
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await watcher.stop()


async def run_service(config: ScannerConfig, store: RecordStore | None = None) -> None:
    """Open the store, serve, and close the store on the way out."""
    if store is None:
        sqlite_store = open_store(config)
        await sqlite_store.initialize()
        store = sqlite_store
    try:
        await serve(ScannerContext(config=config, store=store))
    finally:
        await store.close()


async def run_sweep(config: ScannerConfig, store: RecordStore | None = None) -> int:
    """One on-demand reconciliation sweep."""
    store = store or open_store(config)
    try:
        return await ReconciliationSweeper(ScannerContext(config=config, store=store)).sweep()
    finally:
        await store.close()
