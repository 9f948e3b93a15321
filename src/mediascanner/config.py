"""Configuration loading, merging, and validation."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class MetadataConfig:
    """Toggles and thresholds for extended metadata (mediainfo)."""

    field_order: bool = False
    field_order_scan_duration: int = 200
    scenes: bool = False
    scene_threshold: float = 0.4
    black_detection: bool = False
    black_duration: float = 2.0
    black_ratio: float = 0.98
    black_threshold: float = 0.1
    freeze_detection: bool = False
    freeze_noise: float = 0.001
    freeze_duration: float = 2.0


@dataclass(frozen=True)
class ScannerConfig:
    """Immutable configuration for a scanner process."""

    media_root: Path
    data_dir: Path = Path(".mediascanner")
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    stability_threshold: float = 2.0
    poll_interval: float = 1.0
    thumbnail_width: int = 256
    thumbnail_height: int = -1
    tool_timeout: float = 3600
    queue_size: int = 1024
    sweep_interval: float = 0
    watchdog_interval: float = 300
    watchdog_timeout: float = 10
    log_level: str = "INFO"
    metadata: MetadataConfig | None = None

    @property
    def db_path(self) -> Path:
        return self.data_dir / "media.db"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "mediascanner.log"


_DEFAULTS: dict[str, Any] = {
    "data_dir": ".mediascanner",
    "ffmpeg": "ffmpeg",
    "ffprobe": "ffprobe",
    "stability_threshold": 2.0,
    "poll_interval": 1.0,
    "thumbnail_width": 256,
    "thumbnail_height": -1,
    "tool_timeout": 3600,
    "queue_size": 1024,
    "sweep_interval": 0,
    "watchdog_interval": 300,
    "watchdog_timeout": 10,
    "log_level": "INFO",
}

_METADATA_DEFAULTS: dict[str, Any] = {
    "field_order": False,
    "field_order_scan_duration": 200,
    "scenes": False,
    "scene_threshold": 0.4,
    "black_detection": False,
    "black_duration": 2.0,
    "black_ratio": 0.98,
    "black_threshold": 0.1,
    "freeze_detection": False,
    "freeze_noise": 0.001,
    "freeze_duration": 2.0,
}

_POSITIVE_FIELDS = ("stability_threshold", "poll_interval", "watchdog_interval", "watchdog_timeout")
_NON_NEGATIVE_FIELDS = ("tool_timeout", "sweep_interval")


def load_config(path: Path) -> dict[str, Any]:
    """Read a TOML config file and return a dict."""
    with path.open("rb") as f:
        return tomllib.load(f)


def merge_config(
    file_config: dict[str, Any],
    cli_overrides: dict[str, Any],
) -> ScannerConfig:
    """Merge defaults, file config, and CLI overrides into a validated config.

    Priority: defaults < file config < CLI overrides.
    The media root falls back to the MEDIASCANNER_MEDIA_ROOT environment variable.
    """
    merged: dict[str, Any] = {**_DEFAULTS}
    merged.update({
        k: v for k, v in file_config.items() if v is not None and k != "metadata"
    })
    merged.update({k: v for k, v in cli_overrides.items() if v is not None})

    if not merged.get("media_root"):
        env_root = os.environ.get("MEDIASCANNER_MEDIA_ROOT", "")
        if env_root:
            merged["media_root"] = env_root

    if merged.get("media_root"):
        merged["media_root"] = Path(merged["media_root"])
    merged["data_dir"] = Path(merged["data_dir"])

    return _validate(merged, load_metadata_config(file_config))


def load_metadata_config(file_config: dict[str, Any]) -> MetadataConfig | None:
    """Load the [metadata] section. Returns None when extended metadata is off."""
    section = file_config.get("metadata")
    if not isinstance(section, dict) or not section.get("enabled", True):
        return None

    merged: dict[str, Any] = {**_METADATA_DEFAULTS}
    merged.update({k: v for k, v in section.items() if v is not None and k != "enabled"})

    return MetadataConfig(
        field_order=bool(merged["field_order"]),
        field_order_scan_duration=int(merged["field_order_scan_duration"]),
        scenes=bool(merged["scenes"]),
        scene_threshold=float(merged["scene_threshold"]),
        black_detection=bool(merged["black_detection"]),
        black_duration=float(merged["black_duration"]),
        black_ratio=float(merged["black_ratio"]),
        black_threshold=float(merged["black_threshold"]),
        freeze_detection=bool(merged["freeze_detection"]),
        freeze_noise=float(merged["freeze_noise"]),
        freeze_duration=float(merged["freeze_duration"]),
    )


def _validate(merged: dict[str, Any], metadata: MetadataConfig | None) -> ScannerConfig:
    """Validate the merged config and return a ScannerConfig."""
    errors: list[str] = []

    if not merged.get("media_root"):
        errors.append(
            "media_root is required (set in config file or MEDIASCANNER_MEDIA_ROOT env var)"
        )

    for name in _POSITIVE_FIELDS:
        if float(merged[name]) <= 0:
            errors.append(f"{name} must be greater than 0")
    for name in _NON_NEGATIVE_FIELDS:
        if float(merged[name]) < 0:
            errors.append(f"{name} must not be negative")
    if int(merged["queue_size"]) < 1:
        errors.append("queue_size must be at least 1")

    if errors:
        raise ValueError("Configuration errors:\n  " + "\n  ".join(errors))

    media_root = merged["media_root"]
    if not media_root.is_dir():
        raise ValueError(f"media_root does not exist: {media_root}")

    data_dir = merged["data_dir"]
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ValueError(f"Cannot create data_dir: {data_dir}") from e

    return ScannerConfig(
        media_root=media_root.resolve(),
        data_dir=data_dir,
        ffmpeg=str(merged["ffmpeg"]),
        ffprobe=str(merged["ffprobe"]),
        stability_threshold=float(merged["stability_threshold"]),
        poll_interval=float(merged["poll_interval"]),
        thumbnail_width=int(merged["thumbnail_width"]),
        thumbnail_height=int(merged["thumbnail_height"]),
        tool_timeout=float(merged["tool_timeout"]),
        queue_size=int(merged["queue_size"]),
        sweep_interval=float(merged["sweep_interval"]),
        watchdog_interval=float(merged["watchdog_interval"]),
        watchdog_timeout=float(merged["watchdog_timeout"]),
        log_level=str(merged["log_level"]),
        metadata=metadata,
    )
