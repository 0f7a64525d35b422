from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Tuple

from .codec import Codec
from .constants import (
    BLOCK_TABLE_KEY_NAME,
    DEFAULT_SECTOR_SIZE_SHIFT,
    FILE_COMPRESS,
    FILE_ENCRYPTED,
    FILE_EXISTS,
    FILE_FIX_KEY,
    FORMAT_VERSION,
    HASH_ENTRY_EMPTY,
    HASH_FILE_KEY,
    HASH_NAME_A,
    HASH_NAME_B,
    HASH_TABLE_KEY_NAME,
    HASH_TABLE_OFFSET,
    HEADER_SIZE,
    LISTFILE_NAME,
    MIN_HASH_TABLE_SIZE,
    MPQ_MAGIC,
)
from .encryption import encrypt_block, file_key, hash_string
from .errors import ArchiveClosedError, ArchiveWriteError


_HEADER_STRUCT = struct.Struct("<4sIIHHIIII")
_HASH_ENTRY = struct.Struct("<IIHHI")
_BLOCK_ENTRY = struct.Struct("<IIII")

_MAX_ARCHIVE_SIZE = 0xFFFFFFFF


@dataclass(frozen=True)
class FileOptions:
    """How a single entry is stored.

    encrypt: encrypt the entry payload.
    compress: zlib-compress each sector when that saves space.
    adjust_key: derive the encryption key from the entry's block offset and
        size as well as its name (only meaningful together with encrypt).
    """

    encrypt: bool = False
    compress: bool = True
    adjust_key: bool = False


@dataclass
class _PendingFile:
    name: str
    data: bytes
    options: FileOptions


class ArchiveWriter:
    """Builds an MPQ archive in memory and serializes it in one write.

    Entries are keyed by their MPQ name hash, so adding a name twice (names
    are case-insensitive and treat ``/`` like ``\\``) replaces the earlier
    entry. Unless ``add_listfile`` is False a ``(listfile)`` naming every
    entry is stored alongside them.
    """

    def __init__(self, *, sector_size_shift: int = DEFAULT_SECTOR_SIZE_SHIFT, add_listfile: bool = True):
        self.sector_size_shift = sector_size_shift
        self.add_listfile = add_listfile
        self._files: Dict[Tuple[int, int], _PendingFile] = {}
        self._codec = Codec()
        self._finalized = False

    @property
    def sector_size(self) -> int:
        return 512 << self.sector_size_shift

    def __len__(self) -> int:
        return len(self._files)

    def add_file(self, name: str, data: bytes, options: FileOptions = FileOptions()) -> None:
        if self._finalized:
            raise ArchiveClosedError("Archive already written")
        if not name:
            raise ValueError("Archive entry name may not be empty")
        key = entry_key(name)
        self._files.pop(key, None)
        self._files[key] = _PendingFile(name, bytes(data), options)

    def write(self, sink: BinaryIO) -> int:
        """Serialize the archive to ``sink``; returns the number of bytes written.

        The writer is closed afterwards whether or not the write succeeded.
        """
        if self._finalized:
            raise ArchiveClosedError("Archive already written")
        self._finalized = True
        blob = self._build()
        try:
            sink.write(blob)
            sink.flush()
        except OSError as exc:
            raise ArchiveWriteError(f"Failed to write archive: {exc}") from exc
        return len(blob)

    # internals
    def _entries(self) -> List[_PendingFile]:
        files = [f for f in self._files.values() if f.name != LISTFILE_NAME]
        if self.add_listfile:
            listing = "\r\n".join(f.name for f in files).encode("utf-8", "surrogateescape")
            files.append(_PendingFile(LISTFILE_NAME, listing, FileOptions()))
        else:
            files.extend(f for f in self._files.values() if f.name == LISTFILE_NAME)
        return files

    def _build(self) -> bytes:
        files = self._entries()
        body = bytearray()
        blocks: List[Tuple[int, int, int, int]] = []
        for pending in files:
            block_offset = HEADER_SIZE + len(body)
            payload, flags = self._encode_file(pending, block_offset)
            blocks.append((block_offset, len(payload), len(pending.data), flags))
            body += payload

        hash_size = _hash_table_size(len(files))
        slots = [(HASH_ENTRY_EMPTY, HASH_ENTRY_EMPTY, 0xFFFF, 0xFFFF, HASH_ENTRY_EMPTY)] * hash_size
        for block_index, pending in enumerate(files):
            start = hash_string(pending.name, HASH_TABLE_OFFSET) % hash_size
            for i in range(hash_size):
                pos = (start + i) % hash_size
                if slots[pos][4] == HASH_ENTRY_EMPTY:
                    slots[pos] = (
                        hash_string(pending.name, HASH_NAME_A),
                        hash_string(pending.name, HASH_NAME_B),
                        0,  # neutral locale
                        0,  # default platform
                        block_index,
                    )
                    break

        hash_raw = b"".join(_HASH_ENTRY.pack(*slot) for slot in slots)
        block_raw = b"".join(_BLOCK_ENTRY.pack(*blk) for blk in blocks)
        hash_table_offset = HEADER_SIZE + len(body)
        block_table_offset = hash_table_offset + len(hash_raw)
        archive_size = block_table_offset + len(block_raw)
        if archive_size > _MAX_ARCHIVE_SIZE:
            raise ArchiveWriteError(f"Archive too large for a version {FORMAT_VERSION} header: {archive_size} bytes")

        header = _HEADER_STRUCT.pack(
            MPQ_MAGIC,
            HEADER_SIZE,
            archive_size,
            FORMAT_VERSION,
            self.sector_size_shift,
            hash_table_offset,
            block_table_offset,
            hash_size,
            len(blocks),
        )
        return b"".join(
            (
                header,
                bytes(body),
                encrypt_block(hash_raw, hash_string(HASH_TABLE_KEY_NAME, HASH_FILE_KEY)),
                encrypt_block(block_raw, hash_string(BLOCK_TABLE_KEY_NAME, HASH_FILE_KEY)),
            )
        )

    def _encode_file(self, pending: _PendingFile, block_offset: int) -> Tuple[bytes, int]:
        data = pending.data
        opts = pending.options
        flags = FILE_EXISTS
        if not data:
            return b"", flags
        if opts.compress:
            flags |= FILE_COMPRESS
        key = None
        if opts.encrypt:
            flags |= FILE_ENCRYPTED
            if opts.adjust_key:
                flags |= FILE_FIX_KEY
            key = file_key(pending.name, block_offset, len(data), flags)

        size = self.sector_size
        sectors = [data[i : i + size] for i in range(0, len(data), size)]
        if opts.compress:
            sectors = [self._codec.compress(s) for s in sectors]
        if key is not None:
            sectors = [encrypt_block(s, key + i) for i, s in enumerate(sectors)]
        if not opts.compress:
            return b"".join(sectors), flags

        # Compressed entries are prefixed by a table of sector offsets
        positions = [4 * (len(sectors) + 1)]
        for s in sectors:
            positions.append(positions[-1] + len(s))
        table = struct.pack(f"<{len(positions)}I", *positions)
        if key is not None:
            table = encrypt_block(table, key - 1)
        return table + b"".join(sectors), flags


def entry_key(name: str) -> Tuple[int, int]:
    """Identity of an archive name: equal for names differing only in ASCII case or separator."""
    return hash_string(name, HASH_NAME_A), hash_string(name, HASH_NAME_B)


def _hash_table_size(count: int) -> int:
    size = MIN_HASH_TABLE_SIZE
    while size < count * 2:
        size <<= 1
    return size
