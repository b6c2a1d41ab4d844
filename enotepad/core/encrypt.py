import gzip
import io
import logging
import zlib
from typing import BinaryIO

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from nacl.utils import random as nacl_random

from .errors import CorruptionError
from .format_config import CIPHER_KEY_SIZE, DERIVED_KEY_SIZE, IV_SIZE, READ_CHUNK_SIZE

logger = logging.getLogger(__name__)

# Errors raised by the gzip layer when the decrypted bytes are not what was written.
DECOMPRESSION_ERRORS = (gzip.BadGzipFile, zlib.error, EOFError)


def generate_iv() -> bytes:
    """Fresh IV from libsodium's CSPRNG."""
    return nacl_random(IV_SIZE)


def _make_cipher(key: bytes, iv: bytes) -> Cipher:
    if not isinstance(key, (bytes, bytearray)) or len(key) not in (CIPHER_KEY_SIZE, DERIVED_KEY_SIZE):
        raise ValueError(f"key must be {CIPHER_KEY_SIZE} or {DERIVED_KEY_SIZE} bytes")
    if len(iv) != IV_SIZE:
        raise ValueError(f"iv must be {IV_SIZE} bytes")
    # Only the first 16 bytes of the derived key are used: AES-128.
    return Cipher(algorithms.AES(bytes(key[:CIPHER_KEY_SIZE])), modes.CBC(bytes(iv)))


class CipherWriter(io.RawIOBase):
    """
    Encrypt-while-writing layer over a byte sink (AES-CBC, PKCS#7 padding).

    Data is encrypted as it arrives; the padded final block is written on close().
    The sink is flushed but never closed.
    """

    def __init__(self, sink: BinaryIO, key: bytes, iv: bytes):
        self._sink = sink
        self._encryptor = None
        super().__init__()
        self._encryptor = _make_cipher(key, iv).encryptor()
        self._padder = padding.PKCS7(algorithms.AES.block_size).padder()
        self.bytes_written = 0

    def writable(self) -> bool:
        return True

    def _emit(self, data: bytes) -> None:
        if data:
            self._sink.write(data)
            self.bytes_written += len(data)

    def write(self, b) -> int:
        if self.closed:
            raise ValueError("write to closed CipherWriter")
        data = bytes(b)
        self._emit(self._encryptor.update(self._padder.update(data)))
        return len(data)

    def flush(self) -> None:
        if not self.closed and hasattr(self._sink, "flush"):
            self._sink.flush()

    def close(self) -> None:
        if self.closed:
            return
        try:
            if self._encryptor is not None:
                self._emit(self._encryptor.update(self._padder.finalize()) + self._encryptor.finalize())
        finally:
            super().close()


class CipherReader(io.RawIOBase):
    """
    Decrypt-while-reading layer over a byte source.

    End of data is signalled once the source is exhausted and the padding has
    been stripped. Truncated ciphertext and bad padding raise CorruptionError.
    """

    def __init__(self, source: BinaryIO, key: bytes, iv: bytes):
        super().__init__()
        self._source = source
        self._decryptor = _make_cipher(key, iv).decryptor()
        self._unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        self._buffer = bytearray()
        self._eof = False
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def _fill(self) -> None:
        chunk = self._source.read(READ_CHUNK_SIZE)
        if chunk:
            self.bytes_read += len(chunk)
            self._buffer += self._unpadder.update(self._decryptor.update(chunk))
            return
        try:
            tail = self._decryptor.finalize()
            self._buffer += self._unpadder.update(tail) + self._unpadder.finalize()
        except ValueError as exc:
            raise CorruptionError("Encrypted payload is truncated or badly padded") from exc
        finally:
            self._eof = True

    def readinto(self, b) -> int:
        if self.closed:
            raise ValueError("read from closed CipherReader")
        while not self._buffer and not self._eof:
            self._fill()
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        del self._buffer[:n]
        return n


class StreamStack:
    """
    Owns nested stream layers and closes them innermost-first on exit.

    Every layer gets a close() attempt. The first failure wins; close-time
    failures after it are logged.
    """

    def __init__(self):
        self._layers = []

    def push(self, layer):
        self._layers.append(layer)
        return layer

    def __enter__(self) -> "StreamStack":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        first = exc
        while self._layers:
            layer = self._layers.pop()
            try:
                layer.close()
            except Exception as close_exc:
                if first is None:
                    first = close_exc
                else:
                    logger.warning("Failed to close %s: %s", type(layer).__name__, close_exc)
        if exc is None and first is not None:
            raise first
        return False


def open_payload_writer(stack: StreamStack, sink: BinaryIO, key: bytes, iv: bytes) -> tuple[CipherWriter, gzip.GzipFile]:
    """Returns the cipher layer and the gzip writer stacked on it."""
    cipher = stack.push(CipherWriter(sink, key, iv))
    return cipher, stack.push(gzip.GzipFile(fileobj=cipher, mode="wb", mtime=0))


def open_payload_reader(stack: StreamStack, source: BinaryIO, key: bytes, iv: bytes) -> tuple[CipherReader, gzip.GzipFile]:
    cipher = stack.push(CipherReader(source, key, iv))
    return cipher, stack.push(gzip.GzipFile(fileobj=cipher, mode="rb"))


def drain(stream: BinaryIO) -> int:
    """Read a stream to its end; for gzip this verifies the CRC trailer."""
    total = 0
    while True:
        chunk = stream.read(READ_CHUNK_SIZE)
        if not chunk:
            return total
        total += len(chunk)
