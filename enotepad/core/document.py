from __future__ import annotations

import getpass
import logging
import os
import time
from typing import BinaryIO, Optional, Union

from .datastream import read_exact, read_int, read_utf, write_int
from .encrypt import (
    DECOMPRESSION_ERRORS,
    StreamStack,
    drain,
    generate_iv,
    open_payload_reader,
    open_payload_writer,
)
from .errors import CorruptionError, FormatError, PasswordError
from .format_config import (
    CHECK_SIZE,
    IV_SIZE,
    MAX_TEXT_BYTES,
    SIGNATURE,
    VERSION_FORMAT,
    VERSION_MINOR,
    decode_version,
    encode_version,
)
from .key import FormatVersion, compute_check, derive_key, verify
from .metadata import DocumentMetadata, read_metadata, record_save, write_metadata

logger = logging.getLogger(__name__)


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _source_path(source: BinaryIO, path: Optional[Union[str, os.PathLike]]) -> Optional[str]:
    if path is None:
        path = getattr(source, "name", None)
    if isinstance(path, (str, os.PathLike)):
        return os.path.abspath(os.fspath(path))
    return None


class Document:
    """
    A text document plus its metadata, with load and save routines.

    save() and open() are single sequential passes over a caller-owned stream.
    A Document must not be saved and opened concurrently.
    """

    def __init__(self, text: str = "", metadata: Optional[DocumentMetadata] = None):
        self.text = text
        self.metadata = metadata if metadata is not None else DocumentMetadata()

    def get_text(self) -> str:
        return self.text

    def get_metadata(self) -> DocumentMetadata:
        return self.metadata

    def set_password(self, password: Union[str, bytes, bytearray]) -> None:
        self.metadata.key = derive_key(password)

    def save(self, sink: BinaryIO, username: Optional[str] = None, now_millis: Optional[int] = None) -> None:
        """
        Write the document to ``sink`` in the current format version.

        The save history is updated first. Partial output is not rolled back if
        writing fails.
        """
        key = self.metadata.key
        if key is None:
            raise PasswordError("Key not set in document metadata")

        if username is None:
            username = _current_user()
        if now_millis is None:
            now_millis = int(time.time() * 1000)
        self.metadata.save_history = record_save(self.metadata.save_history, username, now_millis)

        data = self.text.encode("utf-8")
        if len(data) > MAX_TEXT_BYTES:
            raise ValueError(f"Document too large: {len(data)} bytes")

        iv = generate_iv()
        sink.write(SIGNATURE)
        sink.write(encode_version(VERSION_FORMAT, VERSION_MINOR))
        sink.write(compute_check(key, iv))
        sink.write(iv)

        with StreamStack() as stack:
            cipher, out = open_payload_writer(stack, sink, key, iv)
            write_metadata(out, self.metadata)
            write_int(out, len(data))
            out.write(data)
        sink.flush()
        logger.debug("Written %d bytes of text as %d encrypted bytes", len(data), cipher.bytes_written)

    def open(self, source: BinaryIO, password: Union[str, bytes, bytearray],
             path: Optional[Union[str, os.PathLike]] = None) -> None:
        """
        Load a document from ``source``, replacing this one only on success.

        Raises FormatError for foreign or too-new files, PasswordError when the
        password check fails, and CorruptionError when the payload is damaged.
        """
        try:
            signature = read_exact(source, len(SIGNATURE))
        except EOFError:
            signature = b""
        if signature != SIGNATURE:
            raise FormatError(f"Not a valid Encrypted Notepad file: {_source_path(source, path)}")

        try:
            version_format, version_minor = decode_version(read_exact(source, 2))
        except EOFError as exc:
            raise CorruptionError("File header is truncated") from exc
        if version_format > VERSION_FORMAT:
            raise FormatError(f"Unsupported format version {version_format}: {_source_path(source, path)}")
        if version_minor > VERSION_MINOR:
            raise FormatError(f"File format version {version_minor} is newer than this version supports")
        version = FormatVersion.from_minor(version_minor)

        try:
            stored_check = read_exact(source, CHECK_SIZE)
            iv = read_exact(source, IV_SIZE)
        except EOFError as exc:
            raise CorruptionError("File header is truncated") from exc

        key = derive_key(password)
        if not verify(key, iv, stored_check, version):
            raise PasswordError("Invalid password")

        try:
            with StreamStack() as stack:
                cipher, payload = open_payload_reader(stack, source, key, iv)
                new_metadata = read_metadata(payload)
                new_text = self._read_text(payload, version)
                drain(payload)
        except CorruptionError:
            raise
        except DECOMPRESSION_ERRORS + (ValueError,) as exc:
            raise CorruptionError(f"Document payload is corrupted: {exc}") from exc

        logger.debug("Read %d characters of text from %d encrypted bytes", len(new_text), cipher.bytes_read)
        new_metadata.key = key
        new_metadata.filename = _source_path(source, path)
        self.metadata = new_metadata
        self.text = new_text

    @staticmethod
    def _read_text(payload: BinaryIO, version: FormatVersion) -> str:
        if version.uses_short_string_text:
            return read_utf(payload)
        size = read_int(payload)
        if size < 0:
            raise CorruptionError(f"Invalid text length: {size}")
        return read_exact(payload, size).decode("utf-8")
