"""Process-wide collaborators shared by the scanner components."""

from __future__ import annotations

from dataclasses import dataclass

from mediascanner.config import ScannerConfig
from mediascanner.store import RecordStore


@dataclass(frozen=True)
class ScannerContext:
    """Created once at startup and handed to every component constructor."""

    config: ScannerConfig
    store: RecordStore
