"""
Logging setup for the ``enotepad`` package logger.

Every module logs through ``logging.getLogger(__name__)``, so all records end
up under the ``enotepad`` logger. At WARNING only stream close failures and
temp file cleanup problems are reported; DEBUG adds per-save and per-open byte
counts (plaintext and ciphertext). Document text and keys are never logged.
"""

import logging
from pathlib import Path
from typing import Optional, Union


LIBRARY_LOGGER = "enotepad"
LOG_FILE_NAME = "enotepad.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Marks handlers installed here so a later call can replace them.
_HANDLER_FLAG = "_enotepad_handler"


def _owned_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, _HANDLER_FLAG, False)]


def reset_logging() -> None:
    """Remove and close the handlers added by configure_logging()."""
    logger = logging.getLogger(LIBRARY_LOGGER)
    for handler in _owned_handlers(logger):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def configure_logging(debug: bool = False, log_dir: Optional[Union[str, Path]] = None,
                      console: bool = False) -> logging.Logger:
    """
    Route ``enotepad`` records to ``<log_dir>/enotepad.log`` and/or stderr.

    The root logger and handlers added by the application are left alone.
    Calling again replaces the previous configuration. If ``log_dir`` cannot be
    created, file logging is skipped.
    """
    reset_logging()
    logger = logging.getLogger(LIBRARY_LOGGER)
    level = logging.DEBUG if debug else logging.WARNING
    logger.setLevel(level)

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_dir is not None:
        target_dir = Path(log_dir)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(target_dir / LOG_FILE_NAME, encoding="utf-8"))
        except OSError:
            pass

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_FLAG, True)
        logger.addHandler(handler)
    return logger
