from __future__ import annotations

import os
from pathlib import Path, PurePath
from typing import Union

from .constants import ARCHIVE_SEP
from .errors import DirCreationError, PathEscapeError


def normalize(entry_name: str) -> str:
    """Turn an archive name into a ``/`` separated path. Idempotent."""
    return entry_name.replace(ARCHIVE_SEP, "/")


def to_archive_name(relative_path: str) -> str:
    """Turn a host relative path into an archive name with ``\\`` separators."""
    name = relative_path.replace(os.sep, ARCHIVE_SEP)
    if os.altsep:
        name = name.replace(os.altsep, ARCHIVE_SEP)
    return name.replace("/", ARCHIVE_SEP)


def to_host_path(normalized: str, output_root: Union[str, os.PathLike]) -> Path:
    """Join a normalized archive path under ``output_root``.

    Rules:
    - Drop empty and '.' segments (a leading '/' does not make it absolute)
    - Reject '..' segments and drive-qualified names
    - Reject names with nothing left to write
    """
    parts = [p for p in normalized.split("/") if p not in ("", ".")]
    if not parts:
        raise PathEscapeError(normalized, "empty path")
    for p in parts:
        if p == "..":
            raise PathEscapeError(normalized, "path may not contain '..'")
    if PurePath(parts[0]).drive:
        raise PathEscapeError(normalized, "path may not name a drive")
    return Path(output_root).joinpath(*parts)


def ensure_parent_dirs(host_path: Union[str, os.PathLike]) -> None:
    parent = os.path.dirname(os.fspath(host_path)) or "."
    try:
        os.makedirs(parent, exist_ok=True)
    except OSError as exc:
        raise DirCreationError(parent, exc) from exc
