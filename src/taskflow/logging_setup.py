# src/taskflow/logging_setup.py

from __future__ import annotations

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "taskflow.log"

# Firebase REST calls carry the API key in the query string and tokens in bodies/headers.
_SECRET_PATTERNS = (
    re.compile(r"(key=)[^&\s'\"]+"),
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"((?:id_?[Tt]oken|refresh_?[Tt]oken)[\"']?\s*[:=]\s*[\"']?)[^\"'&\s,}]+"),
)


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1***", text)
    return text


class _RedactSecretsFilter(logging.Filter):
    """Rewrites the rendered message so credentials never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class _ConsoleNoiseFilter(logging.Filter):
    """
    The console shares the terminal with the task list, so only:
    - taskflow logs at the configured level
    - backend adapters at WARNING+ (the feed poller is chatty at INFO)
    - everything else at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith("taskflow.backends."):
            return record.levelno >= logging.WARNING
        if name.startswith("taskflow."):
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskflow",
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
    max_bytes: int = 1_000_000,
    backups: int = 3,
) -> Path:
    """
    Console handler (short, filtered) plus a rotating file log with everything.

    Call once from the entrypoint, before the first log line. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    redactor = _RedactSecretsFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    console.addFilter(redactor)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    file_handler.addFilter(redactor)
    root.addHandler(file_handler)

    logging.captureWarnings(True)

    # httpx logs every request URL (with ?key=...) at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return log_file
