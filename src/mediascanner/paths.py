"""Record identifiers derived from media paths."""

from __future__ import annotations

import re
from pathlib import Path, PurePath

_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_BACKSLASHES_RE = re.compile(r"\\+")


def get_id(media_root: Path | str, media_path: Path | str) -> str:
    """Return the record identifier for a file under media_root.

    The path is made relative to the root, the final extension is dropped,
    separators become "/" and the result is uppercased:

        get_id("/media", "/media/show/ep01.mov") == "SHOW/EP01"

    Raises ValueError if media_path is not under media_root.
    """
    relative = PurePath(media_path).relative_to(PurePath(media_root))
    normalized = _BACKSLASHES_RE.sub("/", relative.as_posix())
    return _EXTENSION_RE.sub("", normalized).upper()


def is_under_root(media_root: Path | str, media_path: Path | str) -> bool:
    """Return True if media_path lies inside media_root (lexically)."""
    return PurePath(media_path).is_relative_to(PurePath(media_root))


def get_dir_prefix(media_root: Path | str, dir_path: Path | str) -> str:
    """Return the id prefix shared by every file under dir_path.

    Directory names keep their dots: get_dir_prefix("/media", "/media/v1.2")
    is "V1.2/". The media root itself gives "".

    Raises ValueError if dir_path is not under media_root.
    """
    relative = PurePath(dir_path).relative_to(PurePath(media_root)).as_posix()
    if relative == ".":
        return ""
    return _BACKSLASHES_RE.sub("/", relative).upper() + "/"
