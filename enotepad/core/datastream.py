"""
Big-endian primitives compatible with Java's DataInput/DataOutput.

Reads raise EOFError when the stream ends before the requested size.
"""

import struct
from typing import BinaryIO

from .format_config import MAX_SHORT_STRING_BYTES, READ_CHUNK_SIZE

_INT = struct.Struct(">i")
_LONG = struct.Struct(">q")
_USHORT = struct.Struct(">H")


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes; a single read() may return less."""
    if size < 0:
        raise ValueError(f"negative read size: {size}")
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(min(remaining, READ_CHUNK_SIZE))
        if not chunk:
            raise EOFError(f"expected {size} bytes, got {size - remaining}")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def write_int(stream: BinaryIO, value: int) -> None:
    stream.write(_INT.pack(value))


def read_int(stream: BinaryIO) -> int:
    return _INT.unpack(read_exact(stream, _INT.size))[0]


def write_long(stream: BinaryIO, value: int) -> None:
    stream.write(_LONG.pack(value))


def read_long(stream: BinaryIO) -> int:
    return _LONG.unpack(read_exact(stream, _LONG.size))[0]


def encode_modified_utf8(text: str) -> bytes:
    # NUL is two bytes, supplementary characters are encoded as a surrogate pair.
    out = bytearray()
    for ch in text:
        code = ord(ch)
        if code == 0:
            out += b"\xc0\x80"
        elif code > 0xFFFF:
            code -= 0x10000
            for unit in (0xD800 | (code >> 10), 0xDC00 | (code & 0x3FF)):
                out += chr(unit).encode("utf-8", "surrogatepass")
        else:
            out += ch.encode("utf-8", "surrogatepass")
    return bytes(out)


def decode_modified_utf8(data: bytes) -> str:
    units = data.replace(b"\xc0\x80", b"\x00").decode("utf-8", "surrogatepass")
    # Join surrogate pairs back into single code points.
    return units.encode("utf-16-be", "surrogatepass").decode("utf-16-be", "surrogatepass")


def write_utf(stream: BinaryIO, text: str) -> None:
    """Equivalent of DataOutput.writeUTF: uint16 byte count, then modified UTF-8."""
    data = encode_modified_utf8(text)
    if len(data) > MAX_SHORT_STRING_BYTES:
        raise ValueError(f"encoded string too long: {len(data)} bytes")
    stream.write(_USHORT.pack(len(data)))
    stream.write(data)


def read_utf(stream: BinaryIO) -> str:
    (size,) = _USHORT.unpack(read_exact(stream, _USHORT.size))
    return decode_modified_utf8(read_exact(stream, size))
