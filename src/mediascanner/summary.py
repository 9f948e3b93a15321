"""Single-line cinf/tinf summaries and their consumer-side decoding.

Both lines mirror a legacy text protocol and must be byte-exact:

    cinf: "<id>" <TYPE> <size> <YYYYMMDDHHmmss> <duration_frames> <num>/<den>\\r\\n
    tinf: "<id>" <YYYYMMDDTHHmmss> <thumbnail_size>\\r\\n

Timestamps are rendered in local time from epoch milliseconds.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mediascanner.models import MediaRecord

LINE_END = "\r\n"

STILL = "STILL"
MOVIE = "MOVIE"
AUDIO = "AUDIO"
MEDIA_TYPES = (STILL, MOVIE, AUDIO)


def _local_time(time_ms: int | float) -> datetime:
    return datetime.fromtimestamp(time_ms / 1000)


def format_cinf(
    media_id: str,
    media_type: str,
    size: int,
    time_ms: int | float,
    duration_frames: int,
    timebase: tuple[int, int],
) -> str:
    """Encode the media summary line."""
    if media_type not in MEDIA_TYPES:
        raise ValueError(f"Unknown media type: {media_type!r}")
    num, den = timebase
    return " ".join([
        f'"{media_id}"',
        media_type,
        str(size),
        _local_time(time_ms).strftime("%Y%m%d%H%M%S"),
        str(duration_frames),
        f"{num}/{den}",
    ]) + LINE_END


def format_tinf(media_id: str, time_ms: int | float, size: int) -> str:
    """Encode the thumbnail summary line."""
    return " ".join([
        f'"{media_id}"',
        _local_time(time_ms).strftime("%Y%m%dT%H%M%S"),
        str(size),
    ]) + LINE_END


def parse_cinf(line: str) -> dict[str, Any]:
    """Decode a cinf line into {id, type, changed, duration, timebase}."""
    fields = line.rstrip(LINE_END).split(" ")
    if len(fields) != 6:
        raise ValueError(f"Malformed cinf line: {line!r}")
    num, _, den = fields[5].partition("/")
    return {
        "id": fields[0].strip('"'),
        "type": fields[1],
        "changed": fields[3],
        "duration": int(fields[4]),
        "timebase": (int(num), int(den)),
    }


def parse_tinf(line: str) -> dict[str, Any]:
    """Decode a tinf line into {id, changed, size}."""
    fields = line.rstrip(LINE_END).split(" ")
    if len(fields) != 3:
        raise ValueError(f"Malformed tinf line: {line!r}")
    return {
        "id": fields[0].strip('"'),
        "changed": fields[1],
        "size": int(fields[2]),
    }


def media_json(record: MediaRecord) -> dict[str, Any]:
    """Consumer view of a stored record, as served by the media API."""
    if not record.cinf:
        raise ValueError(f"Record {record.id} has no cinf")
    cinf = parse_cinf(record.cinf)
    return {
        "id": record.id,
        "file": record.media_path,
        "time": record.media_time,
        "size": record.media_size,
        "type": cinf["type"],
        "changed": cinf["changed"],
        "duration": cinf["duration"],
        "timebase": list(cinf["timebase"]),
    }


def thumb_json(record: MediaRecord) -> dict[str, Any]:
    """Consumer view of a record's thumbnail."""
    return {
        "id": record.id,
        "path": f"thumbnail/{record.id}.png",
        "time": record.thumb_time,
        "size": record.thumb_size,
    }
