from __future__ import annotations

import argparse
import os
import sys
import time
from typing import List, Optional

from mpqtool.errors import MpqError
from mpqtool.extract import EntryFailure, extract_archive
from mpqtool.listing import list_entries, view_entry
from mpqtool.pack import pack_to_file
from mpqtool.pattern import compile_pattern
from mpqtool.reader import ArchiveReader
from mpqtool.writer import FileOptions


def _print_warnings(failures: List[EntryFailure]) -> None:
    for failure in failures:
        print(f"Warning: {failure.name}: {failure.cause}", file=sys.stderr)


def cmd_extract(archive: str, *, output: str = "./", pattern: Optional[str] = None, quiet: bool = False) -> bool:
    """Extract files from an archive into a directory.

    Args:
        archive: Path to the MPQ archive.
        output: Directory to extract into; created when missing.
        pattern: Optional glob; only matching (normalized) names are extracted.
        quiet: Limit output to warnings and the final summary.

    Returns:
        True when every selected entry was extracted, False when some failed.
        Per-entry failures are printed as warnings and do not raise.
    """
    glob = compile_pattern(pattern)

    def _progress(name: str, size: int) -> None:
        if not quiet:
            print(f"  extracting: {name}")

    t0 = time.time()
    with ArchiveReader(archive) as r:
        report = extract_archive(r, output, glob, progress=_progress)
    _print_warnings(report.failures)

    dt = max(0.000001, time.time() - t0)
    mib = report.bytes_written / (1024.0 * 1024.0)
    selected = len(report.extracted) + len(report.failures)
    print(
        f"Done: extracted {len(report.extracted)}/{selected} files ({mib:.2f} MiB) in {dt:.1f}s; "
        f"filtered={report.skipped} failed={len(report.failures)}"
    )
    return report.ok


def cmd_list(archive: str, *, pattern: Optional[str] = None) -> bool:
    """Print the (normalized) names listed in an archive, one per line."""
    glob = compile_pattern(pattern)
    with ArchiveReader(archive) as r:
        for name in list_entries(r, glob):
            print(name)
    return True


def cmd_view(archive: str, filename: str) -> bool:
    """Write the raw bytes of one archive entry to stdout.

    The whole entry is read before anything is written, so a failure leaves
    stdout untouched.
    """
    with ArchiveReader(archive) as r:
        data = view_entry(r, filename)
    out = sys.stdout.buffer
    out.write(data)
    out.flush()
    return True


def cmd_new(input_dir: str, output: str, *, options: FileOptions = FileOptions(), quiet: bool = False) -> bool:
    """Create a new archive from every file below a directory.

    Args:
        input_dir: Directory to pack; symlinks inside it are followed.
        output: Path of the archive to write. It only appears once complete.
        options: Storage options applied to every file.
        quiet: Limit output to warnings and the final summary.

    Returns:
        True when every file was packed, False when some were skipped.
    """
    def _progress(name: str, size: int) -> None:
        if not quiet:
            print(f"      adding: {name}")

    t0 = time.time()
    report = pack_to_file(input_dir, output, options, progress=_progress)
    _print_warnings(report.warnings)

    dt = max(0.000001, time.time() - t0)
    mib = report.bytes_read / (1024.0 * 1024.0)
    print(
        f"Done: {len(report.added)} files ({mib:.2f} MiB) in {dt:.1f}s; "
        f"archive {report.archive_size} bytes; skipped={len(report.warnings)}"
    )
    return not report.warnings


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="mpqtool",
        description="Extract, list, view and create MPQ archives",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_extract = sub.add_parser("extract", help="Extract files from an archive")
    ap_extract.add_argument("archive", help="Archive file to extract from")
    ap_extract.add_argument(
        "-o", "--output", metavar="dir", default="./", help="Directory where to output extracted files"
    )
    ap_extract.add_argument(
        "-f",
        "--filter",
        metavar="pattern",
        help="If specified, only extract files matching this glob pattern ('*' stays within one directory, '**' spans them)",
    )
    ap_extract.add_argument("--quiet", help="limit outputs to warnings and summaries", action="store_true")

    ap_view = sub.add_parser("view", help="View a single file in an archive")
    ap_view.add_argument("archive", help="Archive file to read from")
    ap_view.add_argument("file", metavar="filename", help="File inside the archive to view")

    ap_list = sub.add_parser("list", help="List files in an archive")
    ap_list.add_argument("archive", help="Archive file to list")
    ap_list.add_argument("-f", "--filter", metavar="pattern", help="If specified, only list files matching this glob pattern")

    ap_new = sub.add_parser("new", help="Create a new archive from a directory")
    ap_new.add_argument("input", metavar="input-dir", help="Directory to pack")
    ap_new.add_argument("output", metavar="output-archive", help="Archive file to create")
    ap_new.add_argument("--no-compress", action="store_true", help="Store files without compression")
    ap_new.add_argument("--encrypt", action="store_true", help="Encrypt stored files")
    ap_new.add_argument(
        "--adjust-key", action="store_true", help="Derive encryption keys from each file's position (with --encrypt)"
    )
    ap_new.add_argument("--quiet", help="limit outputs to warnings and summaries", action="store_true")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "extract":
            cmd_extract(args.archive, output=args.output, pattern=args.filter, quiet=args.quiet)
        elif args.cmd == "list":
            cmd_list(args.archive, pattern=args.filter)
        elif args.cmd == "view":
            cmd_view(args.archive, args.file)
        elif args.cmd == "new":
            options = FileOptions(encrypt=args.encrypt, compress=not args.no_compress, adjust_key=args.adjust_key)
            cmd_new(args.input, args.output, options=options, quiet=args.quiet)
        else:
            raise RuntimeError("Unknown command")
    except BrokenPipeError:
        # Reader went away (e.g. `mpqtool list x.mpq | head`); stop quietly
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
    except (MpqError, OSError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
