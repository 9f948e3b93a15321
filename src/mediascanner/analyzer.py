"""Field order, scene, black and freeze detection via ffmpeg filters.

ffmpeg reports all of these on stderr as free text, so the results are
scraped with regular expressions:

- idet prints a "Multi frame detection: TFF: n BFF: n Progressive: n" summary.
- showinfo (after a scene select) prints one "Parsed_showinfo_N ... pts_time:t" line per scene cut.
- blackdetect prints "black_start:a black_end:b black_duration:c" per segment.
- freezedetect prints freeze_start, freeze_duration and freeze_end as separate lines.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field

from mediascanner.config import MetadataConfig
from mediascanner.models import Segment
from mediascanner.tools import run_tool

logger = logging.getLogger(__name__)

FIELD_ORDER_UNKNOWN = "unknown"

# idet counts at or below this on both field orders mean progressive
_INTERLACE_MIN_FRAMES = 10

_IDET_RE = re.compile(
    r"Multi frame detection: TFF:\s+(\d+)\s+BFF:\s+(\d+)\s+Progressive:\s+(\d+)"
)
_SCENE_RE = re.compile(r"Parsed_showinfo_.*pts_time:\s*([\d.]+)")
_BLACK_RE = re.compile(
    r"black_start:\s*([\d.]+)\s+black_end:\s*([\d.]+)\s+black_duration:\s*([\d.]+)"
)
_FREEZE_RE = re.compile(r"lavfi\.freezedetect\.freeze_(start|duration|end):\s*([\d.]+)")


class SceneAnalysisError(RuntimeError):
    """Filter diagnostics could not be correlated into segments."""


@dataclass(frozen=True)
class FilterReport:
    scenes: list[float] = field(default_factory=list)
    blacks: list[Segment] = field(default_factory=list)
    freezes: list[Segment] = field(default_factory=list)


def classify_field_order(tff: int, bff: int) -> str:
    """Map idet multi-frame counts to progressive/tff/bff."""
    if tff <= _INTERLACE_MIN_FRAMES and bff <= _INTERLACE_MIN_FRAMES:
        return "progressive"
    return "tff" if tff > bff else "bff"


def parse_field_order(stderr: str) -> str:
    """Extract the field order from idet output, or "unknown"."""
    match = _IDET_RE.search(stderr)
    if match is None:
        return FIELD_ORDER_UNKNOWN
    return classify_field_order(int(match.group(1)), int(match.group(2)))


def build_filter_graph(metadata: MetadataConfig) -> str:
    """Combine the enabled detectors into one filter graph (scene, black, freeze).

    Returns an empty string when no detector is enabled.
    """
    filters: list[str] = []
    if metadata.scenes:
        filters.append(f"select='gt(scene,{metadata.scene_threshold})',showinfo")
    if metadata.black_detection:
        filters.append(
            f"blackdetect=d={metadata.black_duration}"
            f":pic_th={metadata.black_ratio}"
            f":pix_th={metadata.black_threshold}"
        )
    if metadata.freeze_detection:
        filters.append(
            f"freezedetect=n={metadata.freeze_noise}:d={metadata.freeze_duration}"
        )
    return ",".join(filters)


def parse_filter_output(stderr: str) -> FilterReport:
    """Parse scene cuts, black segments and freeze segments from ffmpeg stderr.

    Freeze start/duration/end lines are correlated in a single pass, one
    segment at a time: a segment opens on freeze_start and closes once both
    its duration and end have arrived. freezedetect never reports a duration
    or end for a freeze that lasts until the end of the clip, so an open
    segment at the end of the output is dropped with a warning.

    Raises SceneAnalysisError for a duration or end with no open segment, a
    repeated value, or a freeze_start while the previous segment is open.
    """
    scenes: list[float] = []
    blacks: list[Segment] = []
    freezes: list[Segment] = []
    current: dict[str, float] | None = None

    for line in stderr.splitlines():
        match = _SCENE_RE.search(line)
        if match:
            scenes.append(float(match.group(1)))
            continue

        match = _BLACK_RE.search(line)
        if match:
            blacks.append(Segment(
                start=float(match.group(1)),
                end=float(match.group(2)),
                duration=float(match.group(3)),
            ))
            continue

        match = _FREEZE_RE.search(line)
        if match:
            key, value = match.group(1), float(match.group(2))
            if key == "start":
                if current is not None:
                    raise SceneAnalysisError(
                        f"freeze_start at {value} before the freeze at {current['start']} ended"
                    )
                current = {"start": value}
                continue
            if current is None or key in current:
                raise SceneAnalysisError(f"freeze_{key} without a matching freeze_start")
            current[key] = value
            if len(current) == 3:
                freezes.append(Segment(**current))
                current = None

    if current is not None:
        logger.warning("Dropping freeze at %s that runs to the end of the clip", current["start"])

    return FilterReport(scenes=scenes, blacks=blacks, freezes=freezes)


class SceneAnalyzer:
    """Runs the ffmpeg filter passes configured in MetadataConfig."""

    def __init__(self, ffmpeg: str, metadata: MetadataConfig, timeout: float = 0) -> None:
        self.ffmpeg = ffmpeg
        self.metadata = metadata
        self.timeout = timeout

    async def detect_field_order(self, media_path: str) -> str:
        if not self.metadata.field_order:
            return FIELD_ORDER_UNKNOWN

        result = await run_tool(
            [
                self.ffmpeg,
                "-hide_banner",
                "-i", media_path,
                "-filter:v", "idet",
                "-frames:v", str(self.metadata.field_order_scan_duration),
                "-an",
                "-f", "rawvideo", "-y", os.devnull,
            ],
            self.timeout,
        )
        return parse_field_order(result.stderr)

    async def analyze(self, media_path: str) -> FilterReport:
        graph = build_filter_graph(self.metadata)
        if not graph:
            return FilterReport()

        result = await run_tool(
            [
                self.ffmpeg,
                "-hide_banner",
                "-i", media_path,
                "-filter:v", graph,
                "-an",
                "-f", "null",
                "-",
            ],
            self.timeout,
        )
        report = parse_filter_output(result.stderr)
        logger.debug(
            "%s: %d scenes, %d blacks, %d freezes",
            media_path,
            len(report.scenes),
            len(report.blacks),
            len(report.freezes),
        )
        return report
