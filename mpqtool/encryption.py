from __future__ import annotations

import struct
from typing import List

from .constants import ARCHIVE_SEP, FILE_FIX_KEY, HASH_FILE_KEY, HASH_KEY2_MIX


_MASK = 0xFFFFFFFF
_SEED2_INIT = 0xEEEEEEEE


def _build_crypt_table() -> List[int]:
    table = [0] * 0x500
    seed = 0x00100001
    for index1 in range(0x100):
        index2 = index1
        for _ in range(5):
            seed = (seed * 125 + 3) % 0x2AAAAB
            temp1 = (seed & 0xFFFF) << 0x10
            seed = (seed * 125 + 3) % 0x2AAAAB
            temp2 = seed & 0xFFFF
            table[index2] = temp1 | temp2
            index2 += 0x100
    return table


CRYPT_TABLE = _build_crypt_table()


def hash_string(name: str, hash_type: int) -> int:
    """Hash an archive name the way MPQ lookups do.

    ASCII letters are uppercased and ``/`` is treated as ``\\`` so that
    lookups are case- and separator-insensitive. Non UTF-8 names decoded with
    ``surrogateescape`` hash to their original bytes.
    """
    seed1 = 0x7FED7FED
    seed2 = _SEED2_INIT
    for ch in name.encode("utf-8", "surrogateescape"):
        if ch == 0x2F:
            ch = 0x5C
        elif 0x61 <= ch <= 0x7A:
            ch -= 0x20
        value = CRYPT_TABLE[(hash_type << 8) + ch]
        seed1 = (value ^ (seed1 + seed2)) & _MASK
        seed2 = (ch + seed1 + seed2 + (seed2 << 5) + 3) & _MASK
    return seed1


def encrypt_block(data: bytes, key: int) -> bytes:
    """Encrypt whole 32-bit words of data; trailing bytes are left as-is."""
    count = len(data) // 4
    words = struct.unpack_from(f"<{count}I", data)
    seed1 = key & _MASK
    seed2 = _SEED2_INIT
    out = []
    for value in words:
        seed2 = (seed2 + CRYPT_TABLE[(HASH_KEY2_MIX << 8) + (seed1 & 0xFF)]) & _MASK
        out.append((value ^ (seed1 + seed2)) & _MASK)
        seed1 = ((((~seed1 & _MASK) << 0x15) + 0x11111111) | (seed1 >> 0x0B)) & _MASK
        seed2 = (value + seed2 + (seed2 << 5) + 3) & _MASK
    return struct.pack(f"<{count}I", *out) + data[count * 4:]


def decrypt_block(data: bytes, key: int) -> bytes:
    count = len(data) // 4
    words = struct.unpack_from(f"<{count}I", data)
    seed1 = key & _MASK
    seed2 = _SEED2_INIT
    out = []
    for value in words:
        seed2 = (seed2 + CRYPT_TABLE[(HASH_KEY2_MIX << 8) + (seed1 & 0xFF)]) & _MASK
        plain = (value ^ (seed1 + seed2)) & _MASK
        out.append(plain)
        seed1 = ((((~seed1 & _MASK) << 0x15) + 0x11111111) | (seed1 >> 0x0B)) & _MASK
        seed2 = (plain + seed2 + (seed2 << 5) + 3) & _MASK
    return struct.pack(f"<{count}I", *out) + data[count * 4:]


def file_key(name: str, block_offset: int, file_size: int, flags: int) -> int:
    """Derive the encryption key of an entry from its basename.

    With FILE_FIX_KEY the key also depends on where the block is stored, so
    such entries only decrypt at their original position.
    """
    base = name.replace("/", ARCHIVE_SEP).rsplit(ARCHIVE_SEP, 1)[-1]
    key = hash_string(base, HASH_FILE_KEY)
    if flags & FILE_FIX_KEY:
        key = ((key + block_offset) ^ file_size) & _MASK
    return key
