"""Recursive filesystem watcher feeding an ordered, bounded event queue.

Adds and changes are held back until the file has stopped changing for the
stability threshold, so copies still in progress are never scanned.
Removals are forwarded immediately and cancel any pending add.
"""

from __future__ import annotations

import asyncio
import collections
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

CHANGE = "change"
UNLINK = "unlink"
UNLINK_DIR = "unlinkDir"

# Settled adds held back once this many events wait for an unbounded queue
_DEFAULT_OUTBOX_LIMIT = 1024


@dataclass(frozen=True)
class FileEvent:
    """An add/change (with stat) or a removal (stat is None).

    A removal with `directory` set stands for every file that was under path.
    """

    path: Path
    stat: os.stat_result | None = None
    directory: bool = False

    @property
    def removed(self) -> bool:
        return self.stat is None


class _QueueingEventHandler(FileSystemEventHandler):
    """Translate watchdog events into (kind, path) calls on the event loop."""

    def __init__(self, dispatch: Callable[[str, str], None]) -> None:
        super().__init__()
        self._dispatch = dispatch

    @staticmethod
    def _path(path: str | bytes) -> str:
        return os.fsdecode(path)

    def on_created(self, event: FileSystemEvent) -> None:  # pragma: no cover - thin wrapper
        if not event.is_directory:
            self._dispatch(CHANGE, self._path(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:  # pragma: no cover - thin wrapper
        if not event.is_directory:
            self._dispatch(CHANGE, self._path(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:  # pragma: no cover - thin wrapper
        # A directory moved out of the tree arrives as a single directory deletion
        kind = UNLINK_DIR if event.is_directory else UNLINK
        self._dispatch(kind, self._path(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:  # pragma: no cover - thin wrapper
        # Moves inside the tree also produce one moved event per contained file
        if not event.is_directory:
            self._dispatch(UNLINK, self._path(event.src_path))
            self._dispatch(CHANGE, self._path(event.dest_path))


class MediaWatcher:
    """Watch media_root and push FileEvents into `queue`.

    On start the existing tree is walked once, so every file already on disk
    is reported as an add after it passes the stability check.

    Settled events are handed to `queue` by a single forwarder task, one at a
    time, so they reach the consumer in the order they settled even while the
    queue is full.
    """

    def __init__(
        self,
        media_root: Path,
        queue: asyncio.Queue[FileEvent],
        *,
        stability_threshold: float = 2.0,
        poll_interval: float = 1.0,
    ) -> None:
        self.media_root = media_root
        self.queue = queue
        self.stability_threshold = stability_threshold
        self.poll_interval = poll_interval
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None
        self._pending: dict[str, asyncio.Task[None]] = {}
        self._outbox: collections.deque[FileEvent] = collections.deque()
        self._outbox_ready = asyncio.Event()
        self._forwarder: asyncio.Task[None] | None = None
        self._outbox_limit = queue.maxsize or _DEFAULT_OUTBOX_LIMIT

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._observer = Observer()
        self._observer.schedule(
            _QueueingEventHandler(self._dispatch), str(self.media_root), recursive=True
        )
        self._observer.start()
        logger.info("Watching %s", self.media_root)

        for path in await asyncio.to_thread(self._walk):
            self.notify(CHANGE, path)

    async def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, 5)
            self._observer = None
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()
        if self._forwarder is not None:
            self._forwarder.cancel()
            self._forwarder = None

    def _walk(self) -> list[str]:
        files: list[str] = []
        for dirpath, _, filenames in os.walk(self.media_root):
            files.extend(os.path.join(dirpath, name) for name in filenames)
        files.sort()
        return files

    def _dispatch(self, kind: str, path: str) -> None:
        # Called from the observer thread
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.notify, kind, path)

    def notify(self, kind: str, path: str) -> None:
        """Handle a raw filesystem notification on the event loop."""
        if kind == UNLINK:
            pending = self._pending.pop(path, None)
            if pending is not None:
                pending.cancel()
            self._put(FileEvent(Path(path)))
            return

        if kind == UNLINK_DIR:
            prefix = os.path.join(path, "")
            for pending_path in [p for p in self._pending if p.startswith(prefix)]:
                self._pending.pop(pending_path).cancel()
            self._put(FileEvent(Path(path), directory=True))
            return

        if path in self._pending:
            # Already being polled; the poll loop sees the new size
            return
        self._pending[path] = asyncio.get_running_loop().create_task(
            self._await_write_finish(path)
        )

    def _put(self, event: FileEvent) -> None:
        self._outbox.append(event)
        self._outbox_ready.set()
        if self._forwarder is None or self._forwarder.done():
            self._forwarder = asyncio.get_running_loop().create_task(self._forward())

    async def _forward(self) -> None:
        while True:
            while self._outbox:
                await self.queue.put(self._outbox[0])
                self._outbox.popleft()
            self._outbox_ready.clear()
            await self._outbox_ready.wait()

    async def _await_write_finish(self, path: str) -> None:
        loop = asyncio.get_running_loop()
        me = asyncio.current_task()
        last: tuple[int, int] | None = None
        stable_since = loop.time()
        try:
            while True:
                try:
                    st = await asyncio.to_thread(os.stat, path)
                except FileNotFoundError:
                    logger.debug("Vanished before it settled: %s", path)
                    return

                now = loop.time()
                current = (st.st_size, st.st_mtime_ns)
                if current != last:
                    last = current
                    stable_since = now
                elif (
                    now - stable_since >= self.stability_threshold
                    and len(self._outbox) < self._outbox_limit
                ):
                    # A settled file keeps polling until the outbox has room
                    self._put(FileEvent(Path(path), st))
                    return

                await asyncio.sleep(self.poll_interval)
        finally:
            if self._pending.get(path) is me:
                del self._pending[path]
