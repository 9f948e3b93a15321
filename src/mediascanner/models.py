"""Stored media records and the extended metadata schema."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

THUMBNAIL_ATTACHMENT = "thumb.png"


class _ProbeModel(BaseModel):
    # ffprobe reports most numbers as strings, but not consistently
    model_config = ConfigDict(coerce_numbers_to_str=True)


class CodecInfo(_ProbeModel):
    long_name: str | None = None
    type: str | None = None
    time_base: str | None = None
    tag_string: str | None = None
    is_avc: str | None = None


class StreamInfo(_ProbeModel):
    """One stream of the probe report, reduced to the fields consumers use."""

    codec: CodecInfo

    # Video
    width: int | None = None
    height: int | None = None
    sample_aspect_ratio: str | None = None
    display_aspect_ratio: str | None = None
    pix_fmt: str | None = None
    bits_per_raw_sample: str | None = None

    # Audio
    sample_fmt: str | None = None
    sample_rate: str | None = None
    channels: int | None = None
    channel_layout: str | None = None
    bits_per_sample: int | None = None

    # Common
    time_base: str | None = None
    start_time: str | None = None
    duration_ts: int | None = None
    duration: str | None = None
    bit_rate: str | None = None
    max_bit_rate: str | None = None
    nb_frames: str | None = None


class FormatInfo(_ProbeModel):
    name: str | None = None
    long_name: str | None = None
    size: str | None = None
    start_time: str | None = None
    duration: str | None = None
    bit_rate: str | None = None
    max_bit_rate: str | None = None


class Segment(BaseModel):
    """A detected black or freeze interval, in seconds."""

    start: float
    duration: float
    end: float


class MediaInfo(BaseModel):
    """Extended metadata stored on a record when enabled."""

    name: str
    path: str
    size: int
    time: int
    field_order: str = "unknown"
    scenes: list[float] = []
    freezes: list[Segment] = []
    blacks: list[Segment] = []
    streams: list[StreamInfo] = []
    format: FormatInfo = Field(default_factory=FormatInfo)


@dataclass(frozen=True)
class Attachment:
    content_type: str
    data: bytes

    @property
    def length(self) -> int:
        return len(self.data)


@dataclass
class MediaRecord:
    """A stored media document, keyed by its normalized identifier.

    `rev` is None until the record has been written once.
    """

    id: str
    rev: str | None = None
    media_path: str | None = None
    media_size: int | None = None
    media_time: int | None = None
    cinf: str | None = None
    mediainfo: MediaInfo | None = None
    tinf: str | None = None
    thumb_size: int | None = None
    thumb_time: int | None = None
    attachments: dict[str, Attachment] = field(default_factory=dict)

    @property
    def thumbnail(self) -> bytes | None:
        attachment = self.attachments.get(THUMBNAIL_ATTACHMENT)
        return attachment.data if attachment is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the document body (attachments and rev excluded)."""
        return {
            "id": self.id,
            "media_path": self.media_path,
            "media_size": self.media_size,
            "media_time": self.media_time,
            "cinf": self.cinf,
            "mediainfo": self.mediainfo.model_dump() if self.mediainfo else None,
            "tinf": self.tinf,
            "thumb_size": self.thumb_size,
            "thumb_time": self.thumb_time,
        }

    @staticmethod
    def from_dict(
        d: dict[str, Any],
        rev: str | None = None,
        attachments: dict[str, Attachment] | None = None,
    ) -> MediaRecord:
        mediainfo = d.get("mediainfo")
        return MediaRecord(
            id=d["id"],
            rev=rev,
            media_path=d.get("media_path"),
            media_size=d.get("media_size"),
            media_time=d.get("media_time"),
            cinf=d.get("cinf"),
            mediainfo=MediaInfo.model_validate(mediainfo) if mediainfo else None,
            tinf=d.get("tinf"),
            thumb_size=d.get("thumb_size"),
            thumb_time=d.get("thumb_time"),
            attachments=dict(attachments or {}),
        )
