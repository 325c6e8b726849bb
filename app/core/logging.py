"""Logging bootstrap shared by the API process and the queue worker processes."""

import logging
import logging.handlers
import os
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from app.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(processName)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

_LOG_FILE_PATH: Path | None = None
_LOGGING_INITIALIZED = False

# Chatty third-party loggers that drown worker output at DEBUG.
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "websockets", "asyncio")


class TruncatedFormatter(logging.Formatter):
  """Formatter that truncates the stack trace to the last few lines."""

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    """Keep only the tail of the traceback."""
    lines = traceback.format_exception(*ei)
    # Keep header + last 5 lines of traceback
    if len(lines) > 6:
      return "".join(lines[:1] + ["    ...\n"] + lines[-5:])
    return "".join(lines)


def _log_dir() -> Path:
  return Path(__file__).resolve().parent.parent.parent / "logs"


def _build_handlers(settings: Settings, role: str) -> tuple[logging.Handler, logging.Handler, Path]:
  """Create a stdout handler and a rotating file handler for one process role."""
  log_dir = _log_dir()
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  # Worker processes get their own files so rotation never races across processes.
  log_path = log_dir / f"recipes_{role}_{time.strftime('%Y%m%d_%H%M%S')}_{os.getpid()}.log"

  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))

  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  file_handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return stream, file_handler, log_path


def setup_logging(settings: Settings, *, role: str = "api") -> Path:
  """Route root, uvicorn and fastapi loggers through our handlers."""
  stream_handler, file_handler, log_path = _build_handlers(settings, role)
  for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
    log = logging.getLogger(logger_name)
    log.handlers = [stream_handler, file_handler]
    log.propagate = False

  level = logging.DEBUG if settings.debug else logging.INFO
  logging.basicConfig(level=level, handlers=[stream_handler, file_handler], force=True)
  for logger_name in _QUIET_LOGGERS:
    logging.getLogger(logger_name).setLevel(logging.WARNING)
  return log_path


def initialize_logging(settings: Settings, *, role: str = "api") -> Path | None:
  """Initialize logging once per process and log where output is written."""
  global _LOG_FILE_PATH, _LOGGING_INITIALIZED
  if _LOGGING_INITIALIZED:
    return _LOG_FILE_PATH
  _LOG_FILE_PATH = setup_logging(settings, role=role)
  _LOGGING_INITIALIZED = True
  logging.getLogger("app.core.logging").info("Logging initialized for role=%s. Writing to %s", role, _LOG_FILE_PATH)
  return _LOG_FILE_PATH
