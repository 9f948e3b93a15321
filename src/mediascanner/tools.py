"""Running ffmpeg/ffprobe without blocking the event loop."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# How much of stderr to keep on a ToolError
_STDERR_TAIL = 2000


class ToolError(RuntimeError):
    """An external tool could not be run, timed out, or exited non-zero."""

    def __init__(self, message: str, args: list[str], stderr: str = "") -> None:
        super().__init__(message)
        self.command = args
        self.stderr = stderr[-_STDERR_TAIL:]


@dataclass(frozen=True)
class ToolResult:
    stdout: str
    stderr: str


def check_tools_available(*binaries: str) -> None:
    """Verify that every binary is on PATH. Raises RuntimeError if one is missing."""
    missing = [b for b in binaries if shutil.which(b) is None]
    if missing:
        raise RuntimeError(
            f"{', '.join(missing)} not found on PATH. Install ffmpeg to continue."
        )


def _run(args: list[str], timeout: float | None) -> ToolResult:
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise ToolError(f"{args[0]} timed out after {timeout:.0f}s", args) from e
    except OSError as e:
        raise ToolError(f"{args[0]} could not be started: {e}", args) from e

    if result.returncode != 0:
        raise ToolError(
            f"{args[0]} exited with code {result.returncode}",
            args,
            result.stderr or "",
        )
    return ToolResult(stdout=result.stdout or "", stderr=result.stderr or "")


async def run_tool(args: list[str], timeout: float = 0) -> ToolResult:
    """Run a tool to completion in a worker thread.

    A timeout of 0 means no limit. On expiry the child is killed and
    ToolError is raised.
    """
    logger.debug("Running %s", " ".join(args))
    return await asyncio.to_thread(_run, args, timeout or None)
