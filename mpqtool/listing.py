from __future__ import annotations

from typing import Iterable, Iterator, Optional

from .errors import ListfileNotFoundError
from .pathutil import normalize
from .pattern import GlobPattern, matches
from .reader import ArchiveReader


def list_entries(reader: ArchiveReader, pattern: Optional[GlobPattern] = None) -> Iterator[str]:
    """Normalized names of the listed entries matching ``pattern``.

    The listing is checked up front, so a missing ``(listfile)`` raises here
    rather than on first iteration. The result keeps the archive's listing
    order and can be consumed once.
    """
    names = reader.list_files()
    if names is None:
        raise ListfileNotFoundError()
    return _iter_matching(names, pattern)


def _iter_matching(names: Iterable[str], pattern: Optional[GlobPattern]) -> Iterator[str]:
    for name in names:
        normalized = normalize(name)
        if matches(pattern, normalized):
            yield normalized


def view_entry(reader: ArchiveReader, entry_name: str) -> bytes:
    """Full contents of one entry; any failure is the caller's failure."""
    return reader.read_file(entry_name)
