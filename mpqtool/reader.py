from __future__ import annotations

import os
import re
import struct
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Union

from .codec import Codec
from .constants import (
    BLOCK_TABLE_KEY_NAME,
    FILE_COMPRESS,
    FILE_DELETE_MARKER,
    FILE_ENCRYPTED,
    FILE_EXISTS,
    FILE_IMPLODE,
    FILE_SECTOR_CRC,
    FILE_SINGLE_UNIT,
    HASH_ENTRY_DELETED,
    HASH_ENTRY_EMPTY,
    HASH_FILE_KEY,
    HASH_NAME_A,
    HASH_NAME_B,
    HASH_TABLE_KEY_NAME,
    HASH_TABLE_OFFSET,
    HEADER_SEARCH_STEP,
    LISTFILE_NAME,
    MPQ_MAGIC,
    USER_DATA_MAGIC,
)
from .encryption import decrypt_block, file_key, hash_string
from .errors import (
    ArchiveClosedError,
    ArchiveOpenError,
    EntryNotFoundError,
    EntryReadError,
    FileOpenError,
)


_HEADER_STRUCT = struct.Struct("<4sIIHHIIII")
_USER_DATA_STRUCT = struct.Struct("<4sIII")
_HASH_ENTRY = struct.Struct("<IIHHI")
_BLOCK_ENTRY = struct.Struct("<IIII")

_LISTFILE_SPLIT = re.compile(r"[\r\n;]+")


@dataclass
class Header:
    offset: int
    header_size: int
    archive_size: int
    format_version: int
    sector_size_shift: int
    hash_table_offset: int
    block_table_offset: int
    hash_table_entries: int
    block_table_entries: int


@dataclass
class HashEntry:
    hash_a: int
    hash_b: int
    locale: int
    platform: int
    block_index: int


@dataclass
class BlockEntry:
    offset: int
    archived_size: int
    size: int
    flags: int


class ArchiveReader:
    """Read side of an MPQ archive.

    Accepts a filesystem path (the reader then owns and closes the file) or
    an already open binary stream (left open on close). Once closed the
    reader refuses further reads.
    """

    def __init__(self, source: Union[str, os.PathLike, BinaryIO]):
        self.source = source
        self.f: Optional[BinaryIO] = None
        self.header: Optional[Header] = None
        self.hash_table: List[HashEntry] = []
        self.block_table: List[BlockEntry] = []
        self._owns_file = False
        self._closed = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def sector_size(self) -> int:
        assert self.header is not None
        return 512 << self.header.sector_size_shift

    def open(self):
        if self._closed:
            raise ArchiveClosedError("Archive handle already closed")
        if self.f is not None:
            return
        if hasattr(self.source, "read"):
            self.f = self.source  # type: ignore[assignment]
        else:
            path = os.fspath(self.source)  # type: ignore[arg-type]
            try:
                self.f = open(path, "rb")
            except OSError as exc:
                raise FileOpenError(path, exc) from exc
            self._owns_file = True
        try:
            self.header = self._read_header()
            self.hash_table = self._read_hash_table()
            self.block_table = self._read_block_table()
        except (ArchiveOpenError, OSError, struct.error) as exc:
            # Close our handle before re-raising
            self.close()
            if isinstance(exc, ArchiveOpenError):
                raise
            raise ArchiveOpenError(exc) from exc

    def close(self):
        if self.f is not None and self._owns_file:
            self.f.close()
        self.f = None
        self._closed = True

    def has_file(self, name: str) -> bool:
        self._require_open()
        return self._find_block(name) is not None

    def list_files(self) -> Optional[List[str]]:
        """Names from the archive's ``(listfile)``, or None when it has none."""
        self._require_open()
        if self._find_block(LISTFILE_NAME) is None:
            return None
        raw = self.read_file(LISTFILE_NAME)
        text = raw.decode("utf-8", "surrogateescape")
        return [n.strip() for n in _LISTFILE_SPLIT.split(text) if n.strip()]

    def read_file(self, name: str) -> bytes:
        self._require_open()
        block = self._find_block(name)
        if block is None:
            raise EntryNotFoundError(name)
        if block.size == 0:
            return b""
        assert self.f is not None and self.header is not None
        self.f.seek(self.header.offset + block.offset)
        raw = self.f.read(block.archived_size)
        if len(raw) != block.archived_size:
            raise EntryReadError(f"{name}: block truncated ({len(raw)}/{block.archived_size} bytes)")
        key = None
        if block.flags & FILE_ENCRYPTED:
            key = file_key(name, block.offset, block.size, block.flags)
        if block.flags & FILE_SINGLE_UNIT:
            data = self._read_single_unit(name, block, raw, key)
        elif block.flags & (FILE_COMPRESS | FILE_IMPLODE):
            data = self._read_compressed_sectors(name, block, raw, key)
        else:
            data = self._read_plain_sectors(block, raw, key)
        if len(data) != block.size:
            raise EntryReadError(f"{name}: size mismatch ({len(data)} != {block.size})")
        return data

    # internals
    def _require_open(self):
        if self._closed:
            raise ArchiveClosedError("Archive handle already closed")
        if self.f is None:
            raise RuntimeError("Archive not open")

    def _read_header(self) -> Header:
        assert self.f is not None
        self.f.seek(0, os.SEEK_END)
        size = self.f.tell()
        offset = 0
        while offset + _HEADER_STRUCT.size <= size:
            self.f.seek(offset)
            magic = self.f.read(4)
            if magic == USER_DATA_MAGIC:
                self.f.seek(offset)
                _m, _user_size, header_offset, _user_hdr_size = _USER_DATA_STRUCT.unpack(
                    self.f.read(_USER_DATA_STRUCT.size)
                )
                candidate = offset + header_offset
                self.f.seek(candidate)
                if self.f.read(4) == MPQ_MAGIC:
                    return self._unpack_header(candidate)
            elif magic == MPQ_MAGIC:
                return self._unpack_header(offset)
            offset += HEADER_SEARCH_STEP
        raise ArchiveOpenError("MPQ header not found")

    def _unpack_header(self, offset: int) -> Header:
        assert self.f is not None
        self.f.seek(offset)
        raw = self.f.read(_HEADER_STRUCT.size)
        if len(raw) != _HEADER_STRUCT.size:
            raise ArchiveOpenError("MPQ header truncated")
        fields = _HEADER_STRUCT.unpack(raw)
        header = Header(offset, *fields[1:])
        if header.hash_table_entries == 0:
            raise ArchiveOpenError("archive has an empty hash table")
        return header

    def _read_table(self, rel_offset: int, count: int, key_name: str, what: str) -> bytes:
        assert self.f is not None and self.header is not None
        length = count * 16
        self.f.seek(self.header.offset + rel_offset)
        raw = self.f.read(length)
        if len(raw) != length:
            raise ArchiveOpenError(f"{what} truncated ({len(raw)}/{length} bytes)")
        return decrypt_block(raw, hash_string(key_name, HASH_FILE_KEY))

    def _read_hash_table(self) -> List[HashEntry]:
        assert self.header is not None
        raw = self._read_table(
            self.header.hash_table_offset, self.header.hash_table_entries, HASH_TABLE_KEY_NAME, "hash table"
        )
        return [HashEntry(*fields) for fields in _HASH_ENTRY.iter_unpack(raw)]

    def _read_block_table(self) -> List[BlockEntry]:
        assert self.header is not None
        raw = self._read_table(
            self.header.block_table_offset, self.header.block_table_entries, BLOCK_TABLE_KEY_NAME, "block table"
        )
        return [BlockEntry(*fields) for fields in _BLOCK_ENTRY.iter_unpack(raw)]

    def _find_block(self, name: str) -> Optional[BlockEntry]:
        count = len(self.hash_table)
        start = hash_string(name, HASH_TABLE_OFFSET) % count
        hash_a = hash_string(name, HASH_NAME_A)
        hash_b = hash_string(name, HASH_NAME_B)
        for i in range(count):
            entry = self.hash_table[(start + i) % count]
            if entry.block_index == HASH_ENTRY_EMPTY:
                return None
            if entry.block_index == HASH_ENTRY_DELETED:
                continue
            if entry.hash_a != hash_a or entry.hash_b != hash_b:
                continue
            if entry.block_index >= len(self.block_table):
                continue
            block = self.block_table[entry.block_index]
            if not block.flags & FILE_EXISTS or block.flags & FILE_DELETE_MARKER:
                return None
            return block
        return None

    def _read_single_unit(self, name: str, block: BlockEntry, raw: bytes, key: Optional[int]) -> bytes:
        if key is not None:
            raw = decrypt_block(raw, key)
        if block.flags & FILE_IMPLODE:
            raise EntryReadError(f"{name}: PKWARE implode is not supported")
        if block.flags & FILE_COMPRESS and block.archived_size < block.size:
            return Codec.decompress(raw)
        return raw

    def _read_compressed_sectors(self, name: str, block: BlockEntry, raw: bytes, key: Optional[int]) -> bytes:
        sector_size = self.sector_size
        sectors = (block.size + sector_size - 1) // sector_size
        entries = sectors + 1 + (1 if block.flags & FILE_SECTOR_CRC else 0)
        table_len = entries * 4
        if len(raw) < table_len:
            raise EntryReadError(f"{name}: sector offset table truncated")
        table = raw[:table_len]
        if key is not None:
            table = decrypt_block(table, key - 1)
        positions = struct.unpack(f"<{entries}I", table)
        out = bytearray()
        remaining = block.size
        for i in range(sectors):
            start, end = positions[i], positions[i + 1]
            if start > end or end > len(raw):
                raise EntryReadError(f"{name}: sector {i} out of bounds")
            sector = raw[start:end]
            if key is not None:
                sector = decrypt_block(sector, key + i)
            expected = min(sector_size, remaining)
            if len(sector) < expected:
                if block.flags & FILE_IMPLODE:
                    raise EntryReadError(f"{name}: PKWARE implode is not supported")
                sector = Codec.decompress(sector)
            out += sector
            remaining -= expected
        return bytes(out)

    def _read_plain_sectors(self, block: BlockEntry, raw: bytes, key: Optional[int]) -> bytes:
        if key is None:
            return raw[: block.size]
        sector_size = self.sector_size
        out = bytearray()
        for i, start in enumerate(range(0, block.size, sector_size)):
            out += decrypt_block(raw[start : start + sector_size], key + i)
        return bytes(out)


def open_archive(source: Union[str, os.PathLike, BinaryIO]) -> ArchiveReader:
    """Open an archive for reading; the caller owns (and closes) the handle."""
    reader = ArchiveReader(source)
    reader.open()
    return reader

