from __future__ import annotations

import errno
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Collection, Dict, Iterator, List, Optional, Tuple, Union

from .constants import LISTFILE_NAME
from .errors import ArchiveWriteError, FileOpenError, MpqError
from .extract import EntryFailure
from .pathutil import to_archive_name
from .writer import ArchiveWriter, FileOptions, entry_key


@dataclass
class PackReport:
    added: List[str] = field(default_factory=list)
    warnings: List[EntryFailure] = field(default_factory=list)
    bytes_read: int = 0
    archive_size: int = 0


def _is_cycle(root: str, dirpath: str) -> bool:
    # A followed symlink that resolves to one of its own ancestors
    real = os.path.realpath(dirpath)
    parent = os.path.dirname(dirpath)
    while len(parent) >= len(root):
        if os.path.realpath(parent) == real:
            return True
        if parent == root:
            break
        parent = os.path.dirname(parent)
    return False


def iter_input_files(
    input_root: Union[str, os.PathLike],
    warnings: List[EntryFailure],
    skip: Collection[str] = (),
) -> Iterator[Tuple[str, str]]:
    """Yield ``(host_path, archive_name)`` for each regular file below ``input_root``.

    Symlinks are followed. The root is made absolute before walking so archive
    names come out the same whether it was given relative or absolute.
    Unreadable directories, dangling links and symlink loops are appended to
    ``warnings`` and skipped. Absolute paths in ``skip`` are left out silently.
    """
    root = os.path.abspath(os.fspath(input_root))
    skip = {os.path.realpath(p) for p in skip}

    def _onerror(exc: OSError) -> None:
        name = os.path.relpath(exc.filename, root) if exc.filename else "."
        warnings.append(EntryFailure(name, exc))

    for dirpath, dirnames, filenames in os.walk(root, onerror=_onerror, followlinks=True):
        if dirpath != root and _is_cycle(root, dirpath):
            warnings.append(
                EntryFailure(os.path.relpath(dirpath, root), OSError(errno.ELOOP, "symlink loop; not followed"))
            )
            dirnames[:] = []
            continue
        dirnames.sort()
        for fn in sorted(filenames):
            full = os.path.join(dirpath, fn)
            rel = os.path.relpath(full, root)
            if not os.path.exists(full):
                warnings.append(EntryFailure(rel, OSError(errno.ENOENT, "dangling symlink")))
                continue
            if not os.path.isfile(full) or os.path.realpath(full) in skip:
                continue
            yield full, to_archive_name(rel)


def pack_directory(
    input_root: Union[str, os.PathLike],
    sink: BinaryIO,
    options: FileOptions = FileOptions(),
    *,
    progress: Optional[Callable[[str, int], None]] = None,
    skip: Collection[str] = (),
) -> PackReport:
    """Store every file below ``input_root`` in a new archive written to ``sink``.

    Files that cannot be read, and files whose archive name is already taken
    (names ignore case, and ``(listfile)`` is generated), are reported as
    warnings and left out. Only a missing input directory or a failure
    writing the archive is fatal.
    """
    root = os.fspath(input_root)
    if not os.path.isdir(root):
        cause = NotADirectoryError(errno.ENOTDIR, "not a directory") if os.path.exists(root) else FileNotFoundError(
            errno.ENOENT, "no such directory"
        )
        raise FileOpenError(root, cause)

    report = PackReport()
    writer = ArchiveWriter()
    seen: Dict[Tuple[int, int], str] = {entry_key(LISTFILE_NAME): LISTFILE_NAME}
    for full, name in iter_input_files(root, report.warnings, skip):
        key = entry_key(name)
        if key in seen:
            # Archive names ignore case; keep the first file under a name
            report.warnings.append(EntryFailure(name, ValueError(f"name collides with {seen[key]}")))
            continue
        try:
            data = Path(full).read_bytes()
        except OSError as exc:
            report.warnings.append(EntryFailure(name, exc))
            continue
        writer.add_file(name, data, options)
        seen[key] = name
        report.added.append(name)
        report.bytes_read += len(data)
        if progress is not None:
            progress(name, len(data))
    report.archive_size = writer.write(sink)
    return report


def pack_to_file(
    input_root: Union[str, os.PathLike],
    output_path: Union[str, os.PathLike],
    options: FileOptions = FileOptions(),
    *,
    progress: Optional[Callable[[str, int], None]] = None,
) -> PackReport:
    """Like pack_directory, but into ``output_path`` via a temporary file.

    The archive is staged next to its destination and renamed into place only
    once fully written, so a failed run leaves no partial archive behind.
    """
    out = Path(output_path)
    out_dir = out.parent if str(out.parent) else Path(".")
    try:
        fd, temp_name = tempfile.mkstemp(prefix=".mpqtool-", suffix=".tmp", dir=str(out_dir))
    except OSError as exc:
        raise ArchiveWriteError(f"Cannot create temporary archive in {out_dir}: {exc}") from exc
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            report = pack_directory(input_root, fh, options, progress=progress, skip=(str(temp_path), str(out)))
            os.fsync(fh.fileno())
        # mkstemp creates 0600 files; give the archive the usual umask-based mode
        umask = os.umask(0)
        os.umask(umask)
        os.chmod(str(temp_path), 0o666 & ~umask)
        os.replace(str(temp_path), str(out))
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise ArchiveWriteError(f"Failed to write archive {out}: {exc}") from exc
    except (MpqError, ValueError, RuntimeError):
        temp_path.unlink(missing_ok=True)
        raise
    return report
