from __future__ import annotations

import bz2
import zlib

from .constants import COMPRESSION_BZIP2, COMPRESSION_ZLIB
from .errors import EntryReadError, UnsupportedCompressionError


class Codec:
    """Per-sector compression as stored in MPQ entries.

    A compressed sector starts with a one byte mask naming the algorithm.
    Sectors are only stored compressed when that saves space, so callers
    decide whether a sector needs decompressing by comparing its stored
    length with the expected length.
    """

    def __init__(self, mask: int = COMPRESSION_ZLIB, level: int = 6):
        self.mask = mask
        self.level = level

    def compress(self, sector: bytes) -> bytes:
        if self.mask != COMPRESSION_ZLIB:
            raise RuntimeError(f"unsupported compression mask for writing: {self.mask:#04x}")
        packed = zlib.compress(sector, self.level)
        if len(packed) + 1 >= len(sector):
            return sector
        return bytes([self.mask]) + packed

    @staticmethod
    def decompress(sector: bytes) -> bytes:
        if not sector:
            raise EntryReadError("empty compressed sector")
        mask = sector[0]
        body = sector[1:]
        if mask == COMPRESSION_ZLIB:
            try:
                return zlib.decompress(body)
            except zlib.error as e:
                raise EntryReadError(f"zlib decompression failed: {e}")
        if mask == COMPRESSION_BZIP2:
            try:
                return bz2.decompress(body)
            except (OSError, ValueError, EOFError) as e:
                raise EntryReadError(f"bzip2 decompression failed: {e}")
        raise UnsupportedCompressionError(f"unsupported compression mask: {mask:#04x}")
