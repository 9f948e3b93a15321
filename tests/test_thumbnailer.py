"""Tests for thumbnail generation."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from conftest import completed
from mediascanner.config import ScannerConfig
from mediascanner.models import MediaRecord
from mediascanner.summary import parse_tinf
from mediascanner.thumbnailer import ThumbnailGenerator
from mediascanner.tools import ToolError

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-data"


@pytest.fixture
def thumb_path(tmp_path: Path) -> Path:
    return tmp_path / "thumb-out.png"


def _record(media_root: Path) -> MediaRecord:
    return MediaRecord(id="SHOW/EP01", media_path=str(media_root / "show" / "ep01.mov"))


class TestThumbnailGenerator:
    @pytest.mark.asyncio
    async def test_attaches_png(
        self, scanner_config: ScannerConfig, media_root: Path, thumb_path: Path
    ) -> None:
        def fake_ffmpeg(args: list[str], **kwargs: Any) -> Any:
            Path(args[-1]).write_bytes(PNG_BYTES)
            return completed()

        record = _record(media_root)
        with patch("mediascanner.thumbnailer._temp_thumbnail_path", return_value=thumb_path), \
             patch("mediascanner.tools.subprocess.run", side_effect=fake_ffmpeg) as mock_run:
            await ThumbnailGenerator(scanner_config).generate(record)

        args = mock_run.call_args[0][0]
        assert args[args.index("-frames:v") + 1] == "1"
        assert args[args.index("-vf") + 1] == "thumbnail,scale=256:-1"
        assert args[-1] == str(thumb_path)

        assert record.thumbnail == PNG_BYTES
        assert record.attachments["thumb.png"].content_type == "image/png"
        assert record.thumb_size == len(PNG_BYTES)
        assert record.thumb_time is not None
        tinf = parse_tinf(record.tinf)
        assert tinf["id"] == "SHOW/EP01"
        assert tinf["size"] == len(PNG_BYTES)
        assert not thumb_path.exists()

    @pytest.mark.asyncio
    async def test_temp_file_removed_on_failure(
        self, scanner_config: ScannerConfig, media_root: Path, thumb_path: Path
    ) -> None:
        def failing_ffmpeg(args: list[str], **kwargs: Any) -> Any:
            Path(args[-1]).write_bytes(b"partial")
            return completed(stderr="Conversion failed!", returncode=1)

        record = _record(media_root)
        with patch("mediascanner.thumbnailer._temp_thumbnail_path", return_value=thumb_path), \
             patch("mediascanner.tools.subprocess.run", side_effect=failing_ffmpeg):
            with pytest.raises(ToolError):
                await ThumbnailGenerator(scanner_config).generate(record)

        assert not thumb_path.exists()
        assert record.tinf is None
        assert record.thumbnail is None

    @pytest.mark.asyncio
    async def test_missing_output(
        self, scanner_config: ScannerConfig, media_root: Path, thumb_path: Path
    ) -> None:
        record = _record(media_root)
        with patch("mediascanner.thumbnailer._temp_thumbnail_path", return_value=thumb_path), \
             patch("mediascanner.tools.subprocess.run", return_value=completed()):
            with pytest.raises(FileNotFoundError):
                await ThumbnailGenerator(scanner_config).generate(record)

        assert record.thumb_size is None

    @pytest.mark.asyncio
    async def test_requires_media_path(self, scanner_config: ScannerConfig) -> None:
        with pytest.raises(ValueError):
            await ThumbnailGenerator(scanner_config).generate(MediaRecord(id="X"))
