"""
File format configuration for Encrypted Notepad documents.

Header layout:
  - signature (4 bytes)
  - format version (uint8)
  - minor version (uint8), selects the password check and text encoding
  - password check (2 bytes)
  - iv (16 bytes)
  - payload (variable): AES-128-CBC(gzip(metadata + text))
"""

SIGNATURE = b"ENOT"

VERSION_FORMAT = 1
VERSION_MINOR = 2

CHECK_SIZE = 2
IV_SIZE = 16
DERIVED_KEY_SIZE = 20
CIPHER_KEY_SIZE = 16
BLOCK_SIZE = 16

HEADER_SIZE = len(SIGNATURE) + 2 + CHECK_SIZE + IV_SIZE

# Java DataOutput.writeUTF stores a uint16 byte count.
MAX_SHORT_STRING_BYTES = 0xFFFF
# Text length prefix is a signed 32-bit int on disk.
MAX_TEXT_BYTES = 0x7FFFFFFF

READ_CHUNK_SIZE = 64 * 1024


def encode_version(version_format: int, version_minor: int) -> bytes:
    return bytes([version_format & 0xFF, version_minor & 0xFF])


def decode_version(version_bytes: bytes) -> tuple[int, int]:
    if len(version_bytes) != 2:
        raise ValueError("Invalid version bytes")
    return version_bytes[0], version_bytes[1]
