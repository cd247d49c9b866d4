"""Logging setup shared by every module of the document store.

Modules attach structured context with ``logger.info("...", extra={...})``;
:class:`ContextFormatter` renders that context as ``key=value`` pairs after
the message so identifiers such as ``external_id`` end up in the log line.
"""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

ROOT_LOGGER = "docstore"

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(message)s"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def _render(value: Any) -> str:
    text = str(value)
    if not text or any(ch.isspace() for ch in text) or "=" in text:
        return repr(text)
    return text


class ContextFormatter(logging.Formatter):
    """Formatter that appends ``extra`` fields to the formatted message."""

    def __init__(self, fmt: str = _LOG_FORMAT, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt, datefmt)

    @staticmethod
    def context(record: logging.LogRecord) -> dict[str, Any]:
        return {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = self.context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={_render(value)}" for key, value in sorted(context.items()))
        return f"{line} | {pairs}"


def _log_file() -> Path:
    log_dir = Path(os.getenv("DOCSTORE_LOG_DIR", Path(__file__).resolve().parents[2] / "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / os.getenv("DOCSTORE_LOG_FILE", "docstore.log")


def build_file_handler() -> RotatingFileHandler:
    handler = RotatingFileHandler(
        _log_file(),
        maxBytes=int(os.getenv("DOCSTORE_LOG_MAX_BYTES", 5 * 1024 * 1024)),
        backupCount=int(os.getenv("DOCSTORE_LOG_BACKUP_COUNT", 5)),
        encoding="utf-8",
    )
    handler.setFormatter(ContextFormatter())
    return handler


def build_stream_handler(stream: Any = None) -> logging.StreamHandler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ContextFormatter())
    return handler


def configure_logging(level: Optional[str] = None) -> None:
    """Attach the file and console handlers to the ``docstore`` logger once."""

    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return

    root.setLevel((level or os.getenv("DOCSTORE_LOG_LEVEL", "INFO")).upper())
    root.addHandler(build_file_handler())
    root.addHandler(build_stream_handler())
    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(ROOT_LOGGER).getChild(name)


__all__ = [
    "ContextFormatter",
    "build_file_handler",
    "build_stream_handler",
    "configure_logging",
    "get_logger",
]
