"""Tests for the filesystem watcher."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from mediascanner.watcher import CHANGE, UNLINK, UNLINK_DIR, FileEvent, MediaWatcher


def _watcher(media_root: Path, stability_threshold: float = 0.05) -> MediaWatcher:
    return MediaWatcher(
        media_root,
        asyncio.Queue(),
        stability_threshold=stability_threshold,
        poll_interval=0.01,
    )


async def _next(watcher: MediaWatcher, timeout: float = 2) -> FileEvent:
    return await asyncio.wait_for(watcher.queue.get(), timeout)


class TestNotify:
    @pytest.mark.asyncio
    async def test_change_emitted_once_stable(self, media_root: Path) -> None:
        path = media_root / "clip.mov"
        path.write_bytes(b"12345")
        watcher = _watcher(media_root)

        watcher.notify(CHANGE, str(path))
        event = await _next(watcher)

        assert event.path == path
        assert not event.removed
        assert event.stat is not None and event.stat.st_size == 5

    @pytest.mark.asyncio
    async def test_growing_file_is_held_back(self, media_root: Path) -> None:
        path = media_root / "copying.mov"
        path.write_bytes(b"x")
        watcher = _watcher(media_root, stability_threshold=0.3)

        watcher.notify(CHANGE, str(path))
        for _ in range(4):
            await asyncio.sleep(0.05)
            with path.open("ab") as f:
                f.write(b"more")
        assert watcher.queue.empty()

        event = await _next(watcher)
        assert event.stat is not None and event.stat.st_size == 17

    @pytest.mark.asyncio
    async def test_repeated_changes_coalesce(self, media_root: Path) -> None:
        path = media_root / "clip.mov"
        path.write_bytes(b"x")
        watcher = _watcher(media_root)

        watcher.notify(CHANGE, str(path))
        watcher.notify(CHANGE, str(path))
        await _next(watcher)
        await asyncio.sleep(0.2)

        assert watcher.queue.empty()

    @pytest.mark.asyncio
    async def test_unlink_cancels_pending_change(self, media_root: Path) -> None:
        path = media_root / "clip.mov"
        path.write_bytes(b"x")
        watcher = _watcher(media_root, stability_threshold=0.2)

        watcher.notify(CHANGE, str(path))
        watcher.notify(UNLINK, str(path))
        event = await _next(watcher)
        await asyncio.sleep(0.4)

        assert event.removed
        assert event.path == path
        assert watcher.queue.empty()

    @pytest.mark.asyncio
    async def test_full_queue_keeps_arrival_order(self, media_root: Path) -> None:
        watcher = MediaWatcher(media_root, asyncio.Queue(maxsize=1), poll_interval=0.01)
        for i in range(3):
            watcher.notify(UNLINK, str(media_root / f"e{i}.mov"))
        await asyncio.sleep(0.05)

        received = [await _next(watcher)]
        watcher.notify(UNLINK, str(media_root / "e3.mov"))
        for _ in range(3):
            received.append(await _next(watcher))

        assert [e.path.name for e in received] == ["e0.mov", "e1.mov", "e2.mov", "e3.mov"]

    @pytest.mark.asyncio
    async def test_settled_adds_wait_for_room(self, media_root: Path) -> None:
        for name in ["a.mov", "b.mov", "c.mov"]:
            (media_root / name).write_bytes(b"x")
        watcher = MediaWatcher(
            media_root, asyncio.Queue(maxsize=1), stability_threshold=0.02, poll_interval=0.01
        )

        for name in ["a.mov", "b.mov", "c.mov"]:
            watcher.notify(CHANGE, str(media_root / name))
        await asyncio.sleep(0.2)
        assert len(watcher._outbox) <= 1

        received = {(await _next(watcher)).path.name for _ in range(3)}
        assert received == {"a.mov", "b.mov", "c.mov"}

    @pytest.mark.asyncio
    async def test_directory_unlink_cancels_pending_children(self, media_root: Path) -> None:
        show = media_root / "show"
        show.mkdir()
        (show / "ep01.mov").write_bytes(b"x")
        (media_root / "showreel.mov").write_bytes(b"x")
        watcher = _watcher(media_root, stability_threshold=0.2)

        watcher.notify(CHANGE, str(show / "ep01.mov"))
        watcher.notify(CHANGE, str(media_root / "showreel.mov"))
        watcher.notify(UNLINK_DIR, str(show))
        removed = await _next(watcher)
        kept = await _next(watcher)
        await asyncio.sleep(0.3)

        assert removed.path == show
        assert removed.removed and removed.directory
        assert kept.path.name == "showreel.mov"
        assert watcher.queue.empty()

    @pytest.mark.asyncio
    async def test_vanished_file_is_dropped(self, media_root: Path) -> None:
        watcher = _watcher(media_root)
        watcher.notify(CHANGE, str(media_root / "gone.mov"))
        await asyncio.sleep(0.2)

        assert watcher.queue.empty()


class TestObserver:
    @pytest.mark.asyncio
    async def test_start_reports_existing_files(self, media_root: Path) -> None:
        (media_root / "a.mov").write_bytes(b"a")
        (media_root / "show").mkdir()
        (media_root / "show" / "ep01.mov").write_bytes(b"b")
        watcher = _watcher(media_root)

        await watcher.start()
        try:
            events = [await _next(watcher), await _next(watcher)]
        finally:
            await watcher.stop()

        assert {e.path for e in events} == {media_root / "a.mov", media_root / "show" / "ep01.mov"}

    @pytest.mark.asyncio
    async def test_new_and_deleted_files(self, media_root: Path) -> None:
        watcher = _watcher(media_root)
        await watcher.start()
        try:
            path = media_root / "new.mov"
            path.write_bytes(b"fresh")
            added = await _next(watcher, timeout=5)

            path.unlink()
            removed = await _next(watcher, timeout=5)
        finally:
            await watcher.stop()

        assert added.path == path and not added.removed
        assert removed.path == path and removed.removed

    @pytest.mark.asyncio
    async def test_directory_moved_out_of_root(self, media_root: Path, tmp_path: Path) -> None:
        show = media_root / "show"
        show.mkdir()
        (show / "ep01.mov").write_bytes(b"x")
        watcher = _watcher(media_root)
        await watcher.start()
        try:
            await _next(watcher)
            shutil.move(str(show), str(tmp_path / "archive"))
            event = await _next(watcher, timeout=5)
            while not event.directory:
                event = await _next(watcher, timeout=5)
        finally:
            await watcher.stop()

        assert event.path == show
        assert event.removed
