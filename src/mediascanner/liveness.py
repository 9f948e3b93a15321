"""Self-test watchdog.

Every few minutes a copy of a sentinel media file is dropped into the media
root and removed again, and the record store's change feed must show the
record appear and disappear in time. If it doesn't, the process is killed
so the supervisor can restart it.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from mediascanner.context import ScannerContext
from mediascanner.store import ChangeFeed

logger = logging.getLogger(__name__)

WATCHDOG_FILE = "watchdog.mov"
IGNORE_MARKER = "_watchdogIgnore_"
# Delay between a failed probe and process exit
GRACE_DELAY = 1.0

_MARKER_RE = re.compile(re.escape(IGNORE_MARKER), re.IGNORECASE)
_EXTENSION_RE = re.compile(r"(.+)\.([^.]+)$")


class WatchdogTimeout(RuntimeError):
    """The pipeline did not reflect the probe file in time."""


def copy_name_for(file_name: str, now_ms: int) -> str:
    """Name of the probe copy, e.g. watchdog.mov -> watchdog_watchdogIgnore_<ms>.mov."""
    if _EXTENSION_RE.match(file_name):
        return _EXTENSION_RE.sub(rf"\1{IGNORE_MARKER}{now_ms}.\2", file_name)
    return f"{file_name}{IGNORE_MARKER}{now_ms}"


def _exit_process() -> None:
    logging.shutdown()
    os._exit(1)


@dataclass
class _Probe:
    copy_name: str
    added: asyncio.Future[str]
    removed: asyncio.Future[None] | None = None
    record_id: str | None = None


class WatchDog:
    """Periodic end-to-end probe of watcher, pipeline and store."""

    def __init__(
        self,
        context: ScannerContext,
        *,
        grace_delay: float = GRACE_DELAY,
        terminate: Callable[[], None] | None = None,
    ) -> None:
        self.context = context
        self.interval = context.config.watchdog_interval
        self.timeout = context.config.watchdog_timeout
        self.grace_delay = grace_delay
        self.terminate = terminate or _exit_process

    @property
    def media_root(self) -> Path:
        return self.context.config.media_root

    @property
    def sentinel_path(self) -> Path:
        return self.media_root / WATCHDOG_FILE

    async def run(self) -> None:
        """Probe now and then every interval, until a probe times out.

        Never arms if the sentinel file is missing.
        """
        if not await asyncio.to_thread(self.sentinel_path.exists):
            logger.warning("Watchdog is disabled because %s wasn't found", self.sentinel_path)
            return

        while await self.check():
            await asyncio.sleep(self.interval)

    async def check(self) -> bool:
        """Run one probe. Returns False once termination has been scheduled."""
        try:
            await self.probe()
        except WatchdogTimeout as e:
            logger.error("Watchdog timeout: %s", e)
            logger.error("Watchdog failed, shutting down!")
            asyncio.get_running_loop().call_later(self.grace_delay, self.terminate)
            return False
        except Exception:
            logger.exception("Error in watchdog")
            return True

        logger.info("Watchdog ok")
        return True

    async def cleanup(self) -> None:
        """Remove probe copies left behind by earlier runs."""
        try:
            names = await asyncio.to_thread(os.listdir, self.media_root)
            for name in names:
                if _MARKER_RE.search(name):
                    logger.info("Watchdog: removing old file %s", name)
                    await asyncio.to_thread(os.unlink, self.media_root / name)
        except OSError:
            logger.exception("Watchdog: cleanup failed")

    async def probe(self) -> None:
        copy_name = copy_name_for(WATCHDOG_FILE, int(time.time() * 1000))
        copy_path = self.media_root / copy_name
        logger.info("Watchdog check")

        await self.cleanup()

        loop = asyncio.get_running_loop()
        probe = _Probe(copy_name=copy_name, added=loop.create_future())
        feed = self.context.store.subscribe_changes()
        listener = loop.create_task(self._listen(feed, probe))
        try:
            logger.info("Watchdog: copy file %s", copy_name)
            await asyncio.to_thread(shutil.copyfile, self.sentinel_path, copy_path)
            logger.info("Watchdog: wait for changes")
            await self._wait(probe.added, "Created file didn't appear in database")

            probe.removed = loop.create_future()
            logger.info("Watchdog: remove file")
            await asyncio.to_thread(os.unlink, copy_path)
            logger.info("Watchdog: wait for changes")
            await self._wait(probe.removed, "Removed file wasn't removed from database")
        finally:
            feed.close()
            listener.cancel()

    async def _wait(self, signal: asyncio.Future[object], message: str) -> None:
        try:
            await asyncio.wait_for(signal, self.timeout)
        except TimeoutError as e:
            raise WatchdogTimeout(message) from e

    @staticmethod
    async def _listen(feed: ChangeFeed, probe: _Probe) -> None:
        wanted = probe.copy_name.lower()
        async for change in feed:
            if change.deleted:
                if (
                    change.id == probe.record_id
                    and probe.removed is not None
                    and not probe.removed.done()
                ):
                    probe.removed.set_result(None)
            elif change.record is not None and change.record.media_path:
                if Path(change.record.media_path).name.lower() == wanted:
                    probe.record_id = change.id
                    if not probe.added.done():
                        probe.added.set_result(change.id)
