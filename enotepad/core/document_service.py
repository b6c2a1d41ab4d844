from __future__ import annotations

import logging
import os
import tempfile
from typing import Optional, Union

from ..utils.logger import configure_logging
from .document import Document

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


class DocumentService:
    """Path-based save/open on top of the stream-based Document routines."""

    def __init__(self, temp_prefix: str = "enotepad_save_",
                 log_dir: Optional[PathLike] = None, debug: bool = False):
        """
        ``log_dir`` and ``debug`` set up the package logger (see
        enotepad.utils.logger); with neither given, logging is left to the caller.
        """
        self.temp_prefix = temp_prefix
        if log_dir is not None or debug:
            configure_logging(debug=debug, log_dir=log_dir, console=debug)

    def _create_temp_file(self, target_dir: str) -> tuple[int, str]:
        return tempfile.mkstemp(prefix=self.temp_prefix, suffix=".tmp", dir=target_dir)

    def save_file(self, document: Document, path: PathLike,
                  username: Optional[str] = None, now_millis: Optional[int] = None) -> str:
        """
        Save ``document`` to ``path``, replacing any existing file only once the
        new content is completely written.
        """
        target = os.path.abspath(os.fspath(path))
        fd, temp_path = self._create_temp_file(os.path.dirname(target))
        try:
            with os.fdopen(fd, "wb") as f:
                document.save(f, username=username, now_millis=now_millis)
                os.fsync(f.fileno())
            os.replace(temp_path, target)
        except BaseException:
            try:
                os.remove(temp_path)
            except OSError as cleanup_exc:
                logger.warning("Could not remove temporary file %s: %s", temp_path, cleanup_exc)
            raise
        document.metadata.filename = target
        logger.info("Saved document to %s", target)
        return target

    def open_into(self, document: Document, path: PathLike, password: Union[str, bytes, bytearray]) -> Document:
        """Load ``path`` into an existing document; it is left untouched on failure."""
        target = os.path.abspath(os.fspath(path))
        with open(target, "rb") as f:
            document.open(f, password, path=target)
        logger.info("Opened document %s", target)
        return document

    def open_file(self, path: PathLike, password: Union[str, bytes, bytearray]) -> Document:
        return self.open_into(Document(), path, password)
