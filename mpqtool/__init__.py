"""
mpqtool - extract, list, view and create MPQ archives.

Features:

- Batch extraction with glob filters; one unreadable entry never aborts the batch.
- Listing and single-file viewing driven by the archive's (listfile).
- Archive creation from a directory tree (symlinks followed), written atomically.
- Per-entry storage options: sector compression, encryption, position-adjusted keys.

The pipeline modules (extract, listing, pack) only use the reader/writer API:
ArchiveReader.list_files/read_file and ArchiveWriter.add_file/write.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "reader",
    "writer",
    "extract",
    "listing",
    "pack",
    "pattern",
    "pathutil",
]
