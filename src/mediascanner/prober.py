"""Media probing with ffprobe: classification, cinf line and mediainfo."""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any

from mediascanner.analyzer import SceneAnalyzer
from mediascanner.config import ScannerConfig
from mediascanner.models import CodecInfo, FormatInfo, MediaInfo, MediaRecord, StreamInfo
from mediascanner.summary import AUDIO, MOVIE, STILL, format_cinf
from mediascanner.tools import run_tool

logger = logging.getLogger(__name__)

DEFAULT_TIMEBASE = (1, 25)
# Anything this short (or of unknown length) is a still image
STILL_DURATION = 1 / 24


class ProbeError(RuntimeError):
    """ffprobe output could not be parsed."""


class NotMediaError(ProbeError):
    """ffprobe succeeded but reported no streams."""


@dataclass(frozen=True)
class Classification:
    media_type: str
    duration_frames: int
    timebase: tuple[int, int]


def _parse_fraction(value: Any) -> tuple[int, int] | None:
    parts = str(value or "").split("/")
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


def _duration_secs(report: dict[str, Any]) -> float:
    fmt = report.get("format") or {}
    try:
        duration = float(fmt.get("duration"))
    except (TypeError, ValueError):
        return STILL_DURATION
    if math.isnan(duration) or duration == 0:
        return STILL_DURATION
    return duration


def classify(report: dict[str, Any]) -> Classification:
    """Derive type, duration in frames and timebase from an ffprobe report.

    The first stream decides: no pixel format means AUDIO, otherwise STILL
    up to 1/24s and MOVIE beyond. Video streams take their timebase from the
    reciprocal of the average (or real) frame rate; everything else uses 1/25.
    """
    stream = report["streams"][0]
    duration = _duration_secs(report)
    timebase = DEFAULT_TIMEBASE

    media_type = AUDIO
    if stream.get("pix_fmt"):
        media_type = STILL if duration <= STILL_DURATION else MOVIE

        frame_rate = _parse_fraction(stream.get("avg_frame_rate") or stream.get("r_frame_rate"))
        if frame_rate is not None:
            timebase = (frame_rate[1], frame_rate[0])

    try:
        duration_frames = math.floor(duration * timebase[1] / timebase[0])
    except (ZeroDivisionError, OverflowError, ValueError):
        duration_frames = 0

    return Classification(
        media_type=media_type,
        duration_frames=duration_frames,
        timebase=timebase,
    )


async def probe_media(ffprobe: str, media_path: str, timeout: float = 0) -> dict[str, Any]:
    """Run ffprobe and return its JSON stream/format report.

    Raises ToolError if ffprobe fails, ProbeError on unparseable output and
    NotMediaError when the file has no streams.
    """
    result = await run_tool(
        [
            ffprobe,
            "-hide_banner",
            "-i", media_path,
            "-show_streams",
            "-show_format",
            "-print_format", "json",
        ],
        timeout,
    )

    try:
        report = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ProbeError(f"ffprobe returned invalid JSON for {media_path}") from e

    if not isinstance(report, dict) or not report.get("streams"):
        raise NotMediaError(f"not media: {media_path}")
    return report


def _stream_info(stream: dict[str, Any]) -> StreamInfo:
    return StreamInfo(
        codec=CodecInfo(
            long_name=stream.get("codec_long_name"),
            type=stream.get("codec_type"),
            time_base=stream.get("codec_time_base"),
            tag_string=stream.get("codec_tag_string"),
            is_avc=stream.get("is_avc"),
        ),
        width=stream.get("width"),
        height=stream.get("height"),
        sample_aspect_ratio=stream.get("sample_aspect_ratio"),
        display_aspect_ratio=stream.get("display_aspect_ratio"),
        pix_fmt=stream.get("pix_fmt"),
        bits_per_raw_sample=stream.get("bits_per_raw_sample"),
        sample_fmt=stream.get("sample_fmt"),
        sample_rate=stream.get("sample_rate"),
        channels=stream.get("channels"),
        channel_layout=stream.get("channel_layout"),
        bits_per_sample=stream.get("bits_per_sample"),
        time_base=stream.get("time_base"),
        start_time=stream.get("start_time"),
        duration_ts=stream.get("duration_ts"),
        duration=stream.get("duration"),
        bit_rate=stream.get("bit_rate"),
        max_bit_rate=stream.get("max_bit_rate"),
        nb_frames=stream.get("nb_frames"),
    )


def _format_info(fmt: dict[str, Any]) -> FormatInfo:
    return FormatInfo(
        name=fmt.get("format_name"),
        long_name=fmt.get("format_long_name"),
        size=fmt.get("size"),
        start_time=fmt.get("start_time"),
        duration=fmt.get("duration"),
        bit_rate=fmt.get("bit_rate"),
        max_bit_rate=fmt.get("max_bit_rate"),
    )


class MetadataExtractor:
    """Fills in a record's cinf line and, when enabled, its mediainfo."""

    def __init__(self, config: ScannerConfig, analyzer: SceneAnalyzer | None = None) -> None:
        self.config = config
        self.analyzer = analyzer
        if analyzer is None and config.metadata is not None:
            self.analyzer = SceneAnalyzer(config.ffmpeg, config.metadata, config.tool_timeout)

    async def probe(self, media_path: str) -> dict[str, Any]:
        return await probe_media(self.config.ffprobe, media_path, self.config.tool_timeout)

    def build_cinf(self, record: MediaRecord, report: dict[str, Any]) -> str:
        classification = classify(report)
        changed = record.thumb_time if record.thumb_time is not None else time.time() * 1000
        return format_cinf(
            record.id,
            classification.media_type,
            record.media_size or 0,
            changed,
            classification.duration_frames,
            classification.timebase,
        )

    async def build_mediainfo(self, record: MediaRecord, report: dict[str, Any]) -> MediaInfo:
        if self.analyzer is None:
            raise RuntimeError("Extended metadata is disabled")
        media_path = record.media_path or ""
        field_order = await self.analyzer.detect_field_order(media_path)
        filters = await self.analyzer.analyze(media_path)

        return MediaInfo(
            name=record.id,
            path=media_path,
            size=record.media_size or 0,
            time=record.media_time or 0,
            field_order=field_order,
            scenes=filters.scenes,
            freezes=filters.freezes,
            blacks=filters.blacks,
            streams=[_stream_info(s) for s in report["streams"]],
            format=_format_info(report.get("format") or {}),
        )

    async def extract(self, record: MediaRecord) -> None:
        """Probe record.media_path and set cinf (and mediainfo) on the record.

        cinf is set before the extended passes run, so a failing filter pass
        still leaves the record with a fresh cinf.
        """
        if not record.media_path:
            raise ValueError(f"Record {record.id} has no media path")

        report = await self.probe(record.media_path)
        record.cinf = self.build_cinf(record, report)

        if self.analyzer is not None:
            record.mediainfo = await self.build_mediainfo(record, report)
