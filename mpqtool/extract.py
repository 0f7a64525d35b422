from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from .errors import ListfileNotFoundError, MpqError
from .pathutil import ensure_parent_dirs, normalize, to_host_path
from .pattern import GlobPattern, matches
from .reader import ArchiveReader


@dataclass
class EntryFailure:
    """A recoverable failure for one entry or file in a batch."""

    name: str
    cause: Exception

    def __str__(self) -> str:
        return f"{self.name}: {self.cause}"


@dataclass
class ExtractionReport:
    extracted: List[str] = field(default_factory=list)
    skipped: int = 0
    failures: List[EntryFailure] = field(default_factory=list)
    bytes_written: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures


def extract_archive(
    reader: ArchiveReader,
    output_root: Union[str, os.PathLike],
    pattern: Optional[GlobPattern] = None,
    *,
    progress: Optional[Callable[[str, int], None]] = None,
) -> ExtractionReport:
    """Extract every listed entry (optionally filtered) below ``output_root``.

    Raises ListfileNotFoundError when the archive carries no listing, since
    entry names cannot be discovered otherwise. Every other problem is
    confined to its entry: reading it, mapping its name to a host path,
    creating its parent directories or writing its bytes. Such failures are
    collected in the returned report and the remaining entries are still
    extracted.
    """
    names = reader.list_files()
    if names is None:
        raise ListfileNotFoundError()

    report = ExtractionReport()
    for name in names:
        normalized = normalize(name)
        if not matches(pattern, normalized):
            report.skipped += 1
            continue
        try:
            data = reader.read_file(name)
        except (MpqError, OSError) as exc:
            report.failures.append(EntryFailure(name, exc))
            continue
        try:
            host_path = to_host_path(normalized, output_root)
            ensure_parent_dirs(host_path)
            with open(host_path, "wb") as fh:
                fh.write(data)
        except (MpqError, OSError) as exc:
            report.failures.append(EntryFailure(name, exc))
            continue
        report.extracted.append(normalized)
        report.bytes_written += len(data)
        if progress is not None:
            progress(normalized, len(data))
    return report
