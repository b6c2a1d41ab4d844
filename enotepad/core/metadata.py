from __future__ import annotations

import io
from dataclasses import dataclass, field, replace
from typing import BinaryIO, Optional

from .datastream import read_int, read_long, read_utf, write_int, write_long, write_utf


@dataclass
class SaveRecord:
    timestamp_millis: int
    username: str


@dataclass
class DocumentMetadata:
    """
    Bookkeeping carried alongside the document text.

    Only ``save_history`` is serialized. ``key`` is set from the password and
    ``filename`` from the opened path.
    """
    key: Optional[bytes] = None
    save_history: list[SaveRecord] = field(default_factory=list)
    filename: Optional[str] = None


def _same_user(a: str, b: str) -> bool:
    # Per-character case-insensitive match, so "straße" and "STRASSE" differ.
    if len(a) != len(b):
        return False
    return all(x == y or x.upper() == y.upper() or x.lower() == y.lower() for x, y in zip(a, b))


def record_save(history: list[SaveRecord], username: str, timestamp_millis: int) -> list[SaveRecord]:
    """
    Return the save history after a save by ``username`` at ``timestamp_millis``.

    A repeated save by the user of the last record only moves that record's
    timestamp; anyone else gets a new record. The input list is not modified.
    """
    updated = list(history)
    if updated and _same_user(updated[-1].username, username):
        updated[-1] = replace(updated[-1], timestamp_millis=timestamp_millis)
    else:
        updated.append(SaveRecord(timestamp_millis, username))
    return updated


def write_metadata(stream: BinaryIO, metadata: DocumentMetadata) -> None:
    write_int(stream, len(metadata.save_history))
    for record in metadata.save_history:
        write_long(stream, record.timestamp_millis)
        write_utf(stream, record.username)


def read_metadata(stream: BinaryIO) -> DocumentMetadata:
    count = read_int(stream)
    if count < 0:
        raise ValueError(f"Invalid save history length: {count}")
    history = []
    for _ in range(count):
        timestamp = read_long(stream)
        history.append(SaveRecord(timestamp, read_utf(stream)))
    return DocumentMetadata(save_history=history)


def dump_metadata(metadata: DocumentMetadata) -> bytes:
    buf = io.BytesIO()
    write_metadata(buf, metadata)
    return buf.getvalue()


def load_metadata(data: bytes) -> DocumentMetadata:
    return read_metadata(io.BytesIO(data))
