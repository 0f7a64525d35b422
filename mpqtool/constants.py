# Magic and header layout
MPQ_MAGIC = b"MPQ\x1a"            # archive header
USER_DATA_MAGIC = b"MPQ\x1b"      # user data header preceding the archive header
HEADER_SIZE = 32                  # format version 0 header
FORMAT_VERSION = 0
HEADER_SEARCH_STEP = 0x200        # headers live at 512-byte aligned offsets

# Hash types for hash_string
HASH_TABLE_OFFSET = 0
HASH_NAME_A = 1
HASH_NAME_B = 2
HASH_FILE_KEY = 3
HASH_KEY2_MIX = 4                 # row used by block encryption

# Hash table entry markers
HASH_ENTRY_EMPTY = 0xFFFFFFFF
HASH_ENTRY_DELETED = 0xFFFFFFFE

# Block flags
FILE_IMPLODE = 0x00000100
FILE_COMPRESS = 0x00000200
FILE_ENCRYPTED = 0x00010000
FILE_FIX_KEY = 0x00020000
FILE_SINGLE_UNIT = 0x01000000
FILE_DELETE_MARKER = 0x02000000
FILE_SECTOR_CRC = 0x04000000
FILE_EXISTS = 0x80000000

# Sector compression masks
COMPRESSION_ZLIB = 0x02
COMPRESSION_BZIP2 = 0x10

# Well-known internal names
LISTFILE_NAME = "(listfile)"
HASH_TABLE_KEY_NAME = "(hash table)"
BLOCK_TABLE_KEY_NAME = "(block table)"

ARCHIVE_SEP = "\\"

DEFAULT_SECTOR_SIZE_SHIFT = 3     # 512 << 3 = 4 KiB sectors
MIN_HASH_TABLE_SIZE = 16
