"""
Logging setup for LocalBlobs.

Every record passes two handler filters before it is formatted:
``RequestContextFilter`` stamps it with the id and operation of the request
being served, and ``SensitiveDataFilter`` masks bearer tokens and URL
signatures. Output is plain text or one JSON object per line, optionally
mirrored to a size-rotated file.
"""

import json
import logging
import logging.handlers
import re
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, List, Optional

if TYPE_CHECKING:
    from .config_manager import LoggingConfig

REDACTED = "***REDACTED***"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(request_id)s): %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_operation: ContextVar[Optional[str]] = ContextVar("operation", default=None)

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMG]?B)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3}


@contextmanager
def request_context(request_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag records logged inside the block with a request id.

    Yields:
        The request id in effect, generated when not given
    """
    id_token = _request_id.set(request_id or uuid.uuid4().hex[:12])
    op_token = _operation.set(None)
    try:
        yield _request_id.get()
    finally:
        _operation.reset(op_token)
        _request_id.reset(id_token)


def bind_operation(operation: str) -> None:
    """Attach the blob operation to the current request context."""
    _operation.set(operation)


def current_request_id() -> Optional[str]:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    """Copy the current request id and operation onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        record.operation = _operation.get() or "-"
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask credentials in the rendered message."""

    PATTERNS = [
        (re.compile(r'(Authorization:\s+)(?:Bearer\s+)?\S+', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(Bearer\s+)\S+', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)[^\s"\',}]+', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(signature=)[^;&\s"]+', re.IGNORECASE), r'\1' + REDACTED),
    ]

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg, record.args = redacted, ()
        return True


class JSONFormatter(logging.Formatter):
    """Render records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in ("request_id", "operation"):
            value = getattr(record, field, "-")
            if value != "-":
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def parse_size(value: str) -> int:
    """
    Convert a size such as "10MB", "512 KB" or "2048" to bytes.

    Raises:
        ValueError: If the value is not a number with an optional B/KB/MB/GB unit
    """
    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "B").upper()])


def setup_logging(config: "LoggingConfig") -> None:
    """
    Install LocalBlobs handlers on the root logger.

    Replaces any handlers already installed, so calling it again reconfigures
    logging instead of duplicating output.
    """
    root = logging.getLogger()
    root.setLevel(config.level)
    root.handlers.clear()

    if config.format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, DATE_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            config.file,
            maxBytes=parse_size(config.rotation_size),
            backupCount=config.rotation_count,
            encoding="utf-8",
        ))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RequestContextFilter())
        handler.addFilter(SensitiveDataFilter())
        root.addHandler(handler)

    for name, level in (config.module_levels or {}).items():
        logging.getLogger(name).setLevel(level.upper())

    root.debug(f"Logging configured: level={config.level}, format={config.format}, file={config.file}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
