"""Tests for the self-test watchdog."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mediascanner.context import ScannerContext
from mediascanner.liveness import WatchDog, WatchdogTimeout, copy_name_for
from mediascanner.models import MediaRecord
from mediascanner.paths import get_id
from mediascanner.store import MemoryRecordStore, RecordNotFoundError


@pytest.fixture
def fast_context(context: ScannerContext) -> ScannerContext:
    return replace(context, config=replace(context.config, watchdog_timeout=0.2))


@pytest.fixture
def sentinel(media_root: Path) -> Path:
    path = media_root / "watchdog.mov"
    path.write_bytes(b"sentinel")
    return path


async def _fake_scanner(media_root: Path, store: MemoryRecordStore) -> None:
    """Mirror the media root into the store, the way the real pipeline would."""
    while True:
        on_disk = {str(p) for p in media_root.iterdir() if p.is_file()}
        for path in on_disk:
            media_id = get_id(media_root, path)
            try:
                await store.get(media_id)
            except RecordNotFoundError:
                await store.put(MediaRecord(id=media_id, media_path=path, media_size=1, media_time=0))
        for record in await store.list_page(None, 1000):
            if record.media_path not in on_disk:
                await store.remove(record)
        await asyncio.sleep(0.01)


def test_copy_name_for() -> None:
    assert copy_name_for("watchdog.mov", 1700000000000) == "watchdog_watchdogIgnore_1700000000000.mov"
    assert copy_name_for("sentinel", 5) == "sentinel_watchdogIgnore_5"


class TestWatchDog:
    @pytest.mark.asyncio
    async def test_disabled_without_sentinel(
        self, context: ScannerContext, caplog: pytest.LogCaptureFixture
    ) -> None:
        terminate = MagicMock()
        watchdog = WatchDog(context, terminate=terminate)

        with caplog.at_level(logging.WARNING, logger="mediascanner.liveness"):
            await asyncio.wait_for(watchdog.run(), 1)

        assert "wasn't found" in caplog.text
        terminate.assert_not_called()

    @pytest.mark.asyncio
    async def test_probe_round_trip(
        self, context: ScannerContext, store: MemoryRecordStore, media_root: Path, sentinel: Path
    ) -> None:
        terminate = MagicMock()
        watchdog = WatchDog(context, terminate=terminate)
        scanner = asyncio.create_task(_fake_scanner(media_root, store))
        try:
            assert await watchdog.check() is True
        finally:
            scanner.cancel()

        terminate.assert_not_called()
        assert sorted(p.name for p in media_root.iterdir()) == ["watchdog.mov"]

    @pytest.mark.asyncio
    async def test_timeout_terminates_after_grace(
        self, fast_context: ScannerContext, media_root: Path, sentinel: Path
    ) -> None:
        terminate = MagicMock()
        watchdog = WatchDog(fast_context, grace_delay=0.05, terminate=terminate)

        assert await watchdog.check() is False
        terminate.assert_not_called()
        await asyncio.sleep(0.2)
        terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_missed_removal_times_out(
        self, fast_context: ScannerContext, store: MemoryRecordStore, media_root: Path, sentinel: Path
    ) -> None:
        async def add_only() -> None:
            # Stores new files but never notices removals
            while True:
                for path in media_root.iterdir():
                    media_id = get_id(media_root, path)
                    try:
                        await store.get(media_id)
                    except RecordNotFoundError:
                        await store.put(MediaRecord(id=media_id, media_path=str(path)))
                await asyncio.sleep(0.01)

        watchdog = WatchDog(fast_context, terminate=MagicMock())
        scanner = asyncio.create_task(add_only())
        try:
            with pytest.raises(WatchdogTimeout, match="wasn't removed"):
                await watchdog.probe()
        finally:
            scanner.cancel()

    @pytest.mark.asyncio
    async def test_other_errors_do_not_terminate(
        self, fast_context: ScannerContext, sentinel: Path
    ) -> None:
        terminate = MagicMock()
        watchdog = WatchDog(fast_context, grace_delay=0.01, terminate=terminate)

        with patch.object(watchdog, "probe", AsyncMock(side_effect=OSError("disk gone"))):
            assert await watchdog.check() is True
        await asyncio.sleep(0.05)
        terminate.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_stops_after_failed_check(
        self, fast_context: ScannerContext, sentinel: Path
    ) -> None:
        watchdog = WatchDog(fast_context, terminate=MagicMock())
        watchdog.interval = 0
        with patch.object(watchdog, "check", AsyncMock(side_effect=[True, True, False])) as check:
            await asyncio.wait_for(watchdog.run(), 1)

        assert check.await_count == 3

    @pytest.mark.asyncio
    async def test_cleanup_removes_stale_copies(self, context: ScannerContext, media_root: Path) -> None:
        for name in ["watchdog_watchdogIgnore_1.mov", "WATCHDOG_WATCHDOGIGNORE_2.MOV", "keep.mov"]:
            (media_root / name).write_bytes(b"x")

        await WatchDog(context).cleanup()

        assert os.listdir(media_root) == ["keep.mov"]
