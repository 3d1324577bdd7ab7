from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

FILE_HANDLER_NAME = "essay_grader_file_handler"

# Loggers that receive the rotating file handler when none are given.
DEFAULT_FILE_LOGGERS = ("", "uvicorn", "uvicorn.error", "uvicorn.access", "essay_grader")

# HTTP client libraries log request headers (including Authorization) at DEBUG.
NOISY_LOGGERS = ("httpx", "httpcore")


def resolve_log_path(log_file_path: str) -> Path:
    """Relative paths are taken from the repository root, not the working directory."""
    path = Path(log_file_path)
    if path.is_absolute():
        return path
    return Path(__file__).resolve().parents[2] / path


def parse_level(level: str | int | None, default: int = logging.INFO) -> int:
    if isinstance(level, int):
        return level
    value = getattr(logging, str(level or "").strip().upper(), None)
    return value if isinstance(value, int) else default


def _has_file_handler(logger: logging.Logger) -> bool:
    return any(getattr(h, "name", None) == FILE_HANDLER_NAME for h in logger.handlers)


def _file_handler(path: Path, level: int) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        filename=str(path), when="midnight", backupCount=14, encoding="utf-8"
    )
    handler.name = FILE_HANDLER_NAME
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    return handler


def setup_file_logging(
    *,
    log_file_path: str,
    level: int,
    logger_names: Optional[Iterable[str]] = None,
) -> Optional[Path]:
    """
    Send grading logs to a daily-rotated file (14 days kept).

    Safe to call more than once (uvicorn --reload): a logger that already has
    the handler is left alone. Returns the resolved file path.
    """
    if not log_file_path:
        return None
    path = resolve_log_path(log_file_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    for name in logger_names or DEFAULT_FILE_LOGGERS:
        logger = logging.getLogger(name)
        if _has_file_handler(logger):
            continue
        logger.addHandler(_file_handler(path, level))
        if logger.level == logging.NOTSET or logger.level > level:
            logger.setLevel(level)
        # Named loggers write once; without this each line also lands via root.
        if name:
            logger.propagate = False
    return path


def silence_noisy_loggers() -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
