import hashlib
import hmac
from enum import Enum
from typing import Union

from .errors import FormatError
from .format_config import CHECK_SIZE, DERIVED_KEY_SIZE, IV_SIZE, VERSION_MINOR


class FormatVersion(Enum):
    V0 = 0x00
    V1 = 0x01
    V2 = 0x02

    @classmethod
    def from_minor(cls, version_minor: int) -> "FormatVersion":
        try:
            return cls(version_minor)
        except ValueError:
            raise FormatError(f"Unsupported minor version: {version_minor}")

    @property
    def uses_legacy_check(self) -> bool:
        return self is FormatVersion.V0

    @property
    def uses_short_string_text(self) -> bool:
        return self in (FormatVersion.V0, FormatVersion.V1)


CURRENT_VERSION = FormatVersion(VERSION_MINOR)


def derive_key(password: Union[str, bytes, bytearray]) -> bytes:
    """
    Derive the 20-byte document key from a password.

    This is a plain SHA-1 of the UTF-8 encoded password. Every format version
    derives the key the same way, so it cannot be strengthened without a new
    format version.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")
    if not isinstance(password, (bytes, bytearray)):
        raise TypeError("password must be str, bytes, or bytearray")
    return hashlib.sha1(bytes(password)).digest()


def _require_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != DERIVED_KEY_SIZE:
        raise ValueError(f"key must be {DERIVED_KEY_SIZE} bytes")


def compute_check(key: bytes, iv: bytes) -> bytes:
    """Password check written by the current format version: sha1(key + iv)[:2]."""
    _require_key(key)
    if len(iv) != IV_SIZE:
        raise ValueError(f"iv must be {IV_SIZE} bytes")
    return hashlib.sha1(bytes(key) + bytes(iv)).digest()[:CHECK_SIZE]


def legacy_check(key: bytes) -> bytes:
    """
    Password check of version 0 files: two bytes of the key itself.

    INSECURE: the value does not depend on the IV, so it is a fixed function of
    the password. Only used to read old files, never written.
    """
    _require_key(key)
    start = DERIVED_KEY_SIZE - 3
    return bytes(key[start:start + CHECK_SIZE])


def verify(candidate_key: bytes, iv: bytes, stored_check: bytes, version: FormatVersion) -> bool:
    if version.uses_legacy_check:
        expected = legacy_check(candidate_key)
    else:
        expected = compute_check(candidate_key, iv)
    return hmac.compare_digest(expected, bytes(stored_check))
