class DocError(Exception):
    """Base class for document format failures."""


class FormatError(DocError, ValueError):
    """Not a document of this format, or a version this code cannot read."""


class PasswordError(DocError):
    """Password check mismatch, or no key available for saving."""


class CorruptionError(DocError, ValueError):
    """Payload failed to decrypt, decompress or decode after the password check passed."""


# Names used by the original application.
DocException = FormatError
DocPasswordException = PasswordError
