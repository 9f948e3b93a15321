"""Shared test fixtures for mediascanner."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import tomli_w

from mediascanner.config import MetadataConfig, ScannerConfig
from mediascanner.context import ScannerContext
from mediascanner.store import MemoryRecordStore


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    """Create a temporary media root."""
    d = tmp_path / "media"
    d.mkdir()
    return d.resolve()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def scanner_config(media_root: Path, data_dir: Path) -> ScannerConfig:
    """A config with short timings suitable for tests."""
    return ScannerConfig(
        media_root=media_root,
        data_dir=data_dir,
        stability_threshold=0.05,
        poll_interval=0.01,
        tool_timeout=5,
        watchdog_interval=60,
        watchdog_timeout=2,
    )


@pytest.fixture
def full_metadata() -> MetadataConfig:
    return MetadataConfig(
        field_order=True,
        scenes=True,
        black_detection=True,
        freeze_detection=True,
    )


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def context(scanner_config: ScannerConfig, store: MemoryRecordStore) -> ScannerContext:
    return ScannerContext(config=scanner_config, store=store)


@pytest.fixture
def sample_config_dict(media_root: Path, data_dir: Path) -> dict[str, Any]:
    """Return a minimal valid config dict."""
    return {
        "media_root": str(media_root),
        "data_dir": str(data_dir),
    }


@pytest.fixture
def sample_config_file(tmp_path: Path, sample_config_dict: dict[str, Any]) -> Path:
    """Write a sample config TOML file and return its path."""
    config_path = tmp_path / "config.toml"
    config_path.write_bytes(tomli_w.dumps(sample_config_dict).encode())
    return config_path


def ffprobe_report(
    streams: list[dict[str, Any]] | None = None,
    duration: str | None = "5.000000",
) -> dict[str, Any]:
    """Build an ffprobe -show_streams -show_format report."""
    if streams is None:
        streams = [{
            "codec_type": "video",
            "codec_long_name": "H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10",
            "pix_fmt": "yuv420p",
            "width": 1920,
            "height": 1080,
            "avg_frame_rate": "30000/1001",
            "r_frame_rate": "30000/1001",
            "time_base": "1/30000",
        }]
    fmt: dict[str, Any] = {"format_name": "mov,mp4,m4a,3gp,3g2,mj2", "size": "12345"}
    if duration is not None:
        fmt["duration"] = duration
    return {"streams": streams, "format": fmt}


def completed(stdout: str = "", stderr: str = "", returncode: int = 0) -> MagicMock:
    """Build a mock subprocess.CompletedProcess."""
    mock = MagicMock()
    mock.returncode = returncode
    mock.stdout = stdout
    mock.stderr = stderr
    return mock


def probe_result(report: dict[str, Any]) -> MagicMock:
    return completed(stdout=json.dumps(report))
