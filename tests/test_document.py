import io
import os
import unittest

import pytest

from enotepad.core.datastream import write_int, write_utf
from enotepad.core.document import Document
from enotepad.core.encrypt import StreamStack, open_payload_writer
from enotepad.core.errors import CorruptionError, DocError, FormatError, PasswordError
from enotepad.core.format_config import HEADER_SIZE, IV_SIZE, SIGNATURE
from enotepad.core.key import compute_check, derive_key, legacy_check
from enotepad.core.metadata import DocumentMetadata, SaveRecord, write_metadata

PASSWORD = "correct horse battery staple"
CHECK_OFFSET = len(SIGNATURE) + 2
IV_OFFSET = CHECK_OFFSET + 2


def _save(text: str, password: str = PASSWORD, username: str = "alice", now_millis: int = 1000) -> bytes:
    doc = Document(text)
    doc.set_password(password)
    sink = io.BytesIO()
    doc.save(sink, username=username, now_millis=now_millis)
    return sink.getvalue()


def _open(data: bytes, password: str = PASSWORD) -> Document:
    doc = Document()
    doc.open(io.BytesIO(data), password)
    return doc


def _build_file(text: str, version_minor: int, password: str = PASSWORD,
                history=(), version_format: int = 1) -> bytes:
    """Hand-build a file the way older releases wrote it."""
    key = derive_key(password)
    iv = os.urandom(IV_SIZE)
    check = legacy_check(key) if version_minor == 0 else compute_check(key, iv)
    out = io.BytesIO()
    out.write(SIGNATURE + bytes([version_format, version_minor]) + check + iv)
    with StreamStack() as stack:
        _, payload = open_payload_writer(stack, out, key, iv)
        write_metadata(payload, DocumentMetadata(save_history=list(history)))
        if version_minor < 2:
            write_utf(payload, text)
        else:
            data = text.encode("utf-8")
            write_int(payload, len(data))
            payload.write(data)
    return out.getvalue()


def _collides(data: bytes, password: str) -> bool:
    iv = data[IV_OFFSET:IV_OFFSET + IV_SIZE]
    return compute_check(derive_key(password), iv) == data[CHECK_OFFSET:CHECK_OFFSET + 2]


class TestDocumentRoundTrip(unittest.TestCase):
    """Save then open with the same password."""

    def test_round_trip_unicode(self):
        text = "Hello, wörld! Ünïcödé 中文 \U0001F512\nsecond line\x00end"
        doc = _open(_save(text))
        self.assertEqual(doc.get_text(), text)
        self.assertEqual(doc.get_metadata().key, derive_key(PASSWORD))

    def test_round_trip_text_over_64k(self):
        text = "ж" * 40000 + "tail"
        self.assertGreater(len(text.encode("utf-8")), 65536)
        self.assertEqual(_open(_save(text)).get_text(), text)

    def test_round_trip_empty_text(self):
        self.assertEqual(_open(_save("")).get_text(), "")

    def test_header_layout(self):
        data = _save("header")
        key = derive_key(PASSWORD)
        iv = data[IV_OFFSET:IV_OFFSET + IV_SIZE]
        self.assertEqual(data[:len(SIGNATURE)], SIGNATURE)
        self.assertEqual(data[len(SIGNATURE):CHECK_OFFSET], bytes([1, 2]))
        self.assertEqual(data[CHECK_OFFSET:IV_OFFSET], compute_check(key, iv))
        self.assertEqual((len(data) - HEADER_SIZE) % 16, 0)

    def test_fresh_iv_every_save(self):
        doc = Document("same text")
        doc.set_password(PASSWORD)
        first, second = io.BytesIO(), io.BytesIO()
        doc.save(first, username="alice", now_millis=1)
        doc.save(second, username="alice", now_millis=1)
        self.assertNotEqual(first.getvalue()[IV_OFFSET:HEADER_SIZE], second.getvalue()[IV_OFFSET:HEADER_SIZE])

    def test_filename_from_opened_file(self):
        doc = _open(_save("x"))
        self.assertIsNone(doc.get_metadata().filename)

        doc = Document()
        doc.open(io.BytesIO(_save("x")), PASSWORD, path="notes.etxt")
        self.assertEqual(doc.get_metadata().filename, os.path.abspath("notes.etxt"))


def test_filename_taken_from_file_object(tmp_path):
    path = tmp_path / "diary.etxt"
    path.write_bytes(_save("dear diary"))
    doc = Document()
    with open(path, "rb") as f:
        doc.open(f, PASSWORD)
    assert doc.get_metadata().filename == os.path.abspath(str(path))
    assert doc.get_text() == "dear diary"


def test_save_without_key_fails():
    doc = Document("text")
    with pytest.raises(PasswordError):
        doc.save(io.BytesIO())
    assert doc.get_metadata().save_history == []


def test_wrong_password_rejected_before_decryption():
    rejected = 0
    for _ in range(5):
        data = _save("top secret")
        if _collides(data, "wrong password"):
            # 1 in 65536 chance: the 2-byte check accepts a wrong password.
            continue
        with pytest.raises(PasswordError):
            _open(data, "wrong password")
        rejected += 1
    assert rejected > 0


def test_minor_version_3_rejected_regardless_of_password():
    data = bytearray(_save("text"))
    data[len(SIGNATURE) + 1] = 3
    with pytest.raises(FormatError):
        _open(bytes(data))
    with pytest.raises(FormatError):
        _open(bytes(data), "wrong password")


def test_newer_major_version_rejected():
    data = _build_file("text", 2, version_format=2)
    with pytest.raises(FormatError):
        _open(data)


def test_older_major_version_accepted():
    assert _open(_build_file("old major", 2, version_format=0)).get_text() == "old major"


def test_bad_signature_rejected():
    data = b"NOPE" + _save("text")[len(SIGNATURE):]
    with pytest.raises(FormatError):
        _open(data)
    with pytest.raises(FormatError):
        _open(b"")


def test_truncated_header_is_corruption():
    with pytest.raises(CorruptionError):
        _open(_save("text")[:HEADER_SIZE - 3])


def test_legacy_v0_file_opens():
    text = "legacy note with NUL \x00 and emoji \U0001F600"
    history = [SaveRecord(1_300_000_000_000, "ivan")]
    doc = _open(_build_file(text, 0, history=history))
    assert doc.get_text() == text
    assert doc.get_metadata().save_history == history


def test_legacy_v0_wrong_password():
    data = _build_file("legacy", 0)
    if legacy_check(derive_key("nope")) != data[CHECK_OFFSET:CHECK_OFFSET + 2]:
        with pytest.raises(PasswordError):
            _open(data, "nope")


def test_v1_file_opens():
    assert _open(_build_file("version one", 1)).get_text() == "version one"


def test_resave_upgrades_legacy_file_to_current_version():
    doc = _open(_build_file("upgrade me", 0))
    sink = io.BytesIO()
    doc.save(sink, username="alice", now_millis=5)
    data = sink.getvalue()
    assert data[len(SIGNATURE) + 1] == 2
    assert _open(data).get_text() == "upgrade me"


def test_save_history_same_user_updates_in_place():
    doc = Document("text")
    doc.set_password(PASSWORD)
    doc.save(io.BytesIO(), username="alice", now_millis=1000)
    sink = io.BytesIO()
    doc.save(sink, username="alice", now_millis=2000)
    assert _open(sink.getvalue()).get_metadata().save_history == [SaveRecord(2000, "alice")]


def test_save_history_different_users_append():
    doc = Document("text")
    doc.set_password(PASSWORD)
    doc.save(io.BytesIO(), username="alice", now_millis=1000)
    sink = io.BytesIO()
    doc.save(sink, username="bob", now_millis=2000)
    assert _open(sink.getvalue()).get_metadata().save_history == [
        SaveRecord(1000, "alice"),
        SaveRecord(2000, "bob"),
    ]


def test_flipped_payload_byte_is_corruption():
    data = bytearray(_save("The quick brown fox jumps over the lazy dog. " * 200))
    data[HEADER_SIZE + (len(data) - HEADER_SIZE) // 2] ^= 0x01
    with pytest.raises(CorruptionError):
        _open(bytes(data))


def test_truncated_payload_is_corruption():
    data = _save("some text that will be cut " * 50)
    with pytest.raises(CorruptionError):
        _open(data[:-16])


@pytest.mark.parametrize("offset", [CHECK_OFFSET, IV_OFFSET, IV_OFFSET + IV_SIZE - 1])
def test_tampered_header_never_opens(offset):
    data = bytearray(_save("tamper target " * 10))
    data[offset] ^= 0x80
    with pytest.raises((PasswordError, CorruptionError)):
        _open(bytes(data))


def test_failed_open_leaves_document_untouched():
    doc = Document("keep me")
    doc.set_password(PASSWORD)
    original_metadata = doc.get_metadata()

    corrupted = bytearray(_save("other " * 300))
    corrupted[-20] ^= 0xFF
    for data in (b"garbage!", bytes(corrupted)):
        with pytest.raises((FormatError, CorruptionError)):
            doc.open(io.BytesIO(data), PASSWORD)
        assert doc.get_text() == "keep me"
        assert doc.get_metadata() is original_metadata


class _FailingSink:
    """Accepts ``limit`` bytes, then every write raises."""

    def __init__(self, limit: int):
        self.limit = limit
        self.data = bytearray()

    def write(self, b):
        if len(self.data) + len(b) > self.limit:
            raise OSError("disk full")
        self.data += b
        return len(b)

    def flush(self):
        pass


class _FailingSource:
    """Serves the first ``limit`` bytes of ``payload``, then every read raises."""

    def __init__(self, payload: bytes, limit: int):
        self._payload = payload
        self._limit = limit
        self._idx = 0

    def read(self, size=-1):
        if self._idx >= self._limit:
            raise OSError("device gone")
        end = self._limit if size < 0 else min(self._limit, self._idx + size)
        chunk = self._payload[self._idx:end]
        self._idx = end
        return chunk


def test_sink_io_error_propagates_unchanged():
    doc = Document("payload " * 500)
    doc.set_password(PASSWORD)
    with pytest.raises(OSError, match="disk full") as excinfo:
        doc.save(_FailingSink(HEADER_SIZE + 10), username="alice", now_millis=1)
    assert not isinstance(excinfo.value, DocError)


def test_source_io_error_after_header_propagates_unchanged():
    data = _save(os.urandom(4000).hex())
    doc = Document("keep me")
    with pytest.raises(OSError, match="device gone") as excinfo:
        doc.open(_FailingSource(data, HEADER_SIZE + 20), PASSWORD)
    assert not isinstance(excinfo.value, DocError)
    assert doc.get_text() == "keep me"
