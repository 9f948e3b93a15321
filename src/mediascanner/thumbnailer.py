"""Single-frame PNG thumbnails via ffmpeg."""

from __future__ import annotations

import asyncio
import logging
import secrets
import tempfile
from pathlib import Path

from mediascanner.config import ScannerConfig
from mediascanner.models import THUMBNAIL_ATTACHMENT, Attachment, MediaRecord
from mediascanner.summary import format_tinf
from mediascanner.tools import run_tool

logger = logging.getLogger(__name__)


def _temp_thumbnail_path() -> Path:
    return Path(tempfile.gettempdir()) / f"{secrets.token_hex(8)}.png"


class ThumbnailGenerator:
    """Extracts one representative frame and attaches it to the record."""

    def __init__(self, config: ScannerConfig) -> None:
        self.config = config

    def _command(self, media_path: str, output_path: Path) -> list[str]:
        return [
            self.config.ffmpeg,
            "-hide_banner",
            "-i", media_path,
            "-frames:v", "1",
            "-vf", f"thumbnail,scale={self.config.thumbnail_width}:{self.config.thumbnail_height}",
            "-threads", "1",
            "-y",
            str(output_path),
        ]

    async def generate(self, record: MediaRecord) -> None:
        """Render the thumbnail and set tinf, size, time and the attachment.

        The temporary PNG is removed whether or not ffmpeg succeeds.
        """
        if not record.media_path:
            raise ValueError(f"Record {record.id} has no media path")

        tmp_path = _temp_thumbnail_path()
        try:
            await run_tool(self._command(record.media_path, tmp_path), self.config.tool_timeout)

            thumb_stat = await asyncio.to_thread(tmp_path.stat)
            data = await asyncio.to_thread(tmp_path.read_bytes)
        finally:
            await asyncio.to_thread(tmp_path.unlink, missing_ok=True)

        record.thumb_size = thumb_stat.st_size
        record.thumb_time = thumb_stat.st_mtime_ns // 1_000_000
        record.tinf = format_tinf(record.id, record.thumb_time, record.thumb_size)
        record.attachments[THUMBNAIL_ATTACHMENT] = Attachment(
            content_type="image/png",
            data=data,
        )
