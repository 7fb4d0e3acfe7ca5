from __future__ import annotations

import os
import sys
import time
import traceback
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger as _logger

_CONFIGURED = False
DEFAULT_LOG_DIR = Path(__file__).resolve().parent / "logs"
LOG_DIR_ENV = "MERGEWISE_LOG_DIR"
LOG_LEVEL_ENV = "MERGEWISE_LOG_LEVEL"
FILE_LOGGING_ENV = "MERGEWISE_FILE_LOGGING"

_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> <dim>{extra}</dim>"
)


def _resolve_log_dir(explicit: str | Path | None) -> Path:
    """Determine the directory to store log files."""

    if explicit is not None:
        return Path(explicit).expanduser().resolve()
    env_value = os.getenv(LOG_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return DEFAULT_LOG_DIR


def _file_logging_enabled() -> bool:
    return os.getenv(FILE_LOGGING_ENV, "1").strip().lower() not in {"0", "false", "no", "off"}


def configure_logger(*, log_dir: str | Path | None = None, level: str | None = None) -> None:
    """Configure the Loguru sinks exactly once per worker process."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    log_level = level or os.getenv(LOG_LEVEL_ENV, "INFO")

    _logger.remove()
    _logger.add(
        sys.stdout,
        level=log_level,
        format=_LOG_FORMAT,
        colorize=sys.stdout.isatty(),
    )

    if _file_logging_enabled():
        target_dir = _resolve_log_dir(log_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        _logger.add(
            target_dir / "worker-{time:YYYY-MM-DD}.log",
            rotation="50 MB",
            retention="10 days",
            level="DEBUG",
            format=_LOG_FORMAT,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    _CONFIGURED = True


def get_logger(*, log_dir: str | Path | None = None, level: str | None = None):
    """Return the configured logger, configuring it on first access."""

    configure_logger(log_dir=log_dir, level=level)
    return _logger


def log_with_context(logger_instance, **context: str | int | None) -> Any:
    """Bind job context fields (job id, repository, PR number...) to a logger.

    Usage:
        logger = log_with_context(get_logger(), job_id="job-1", repository="owner/repo")
        logger.info("Processing job")
    """
    return logger_instance.bind(**{k: v for k, v in context.items() if v is not None})


def describe_error(error: BaseException) -> str:
    """Return the formatted traceback of ``error``, or its repr when it was never raised."""

    if error.__traceback__ is None:
        return repr(error)
    return "".join(traceback.format_exception(type(error), error, error.__traceback__)).rstrip()


@contextmanager
def log_timing(logger_instance, operation: str, **context: str | int | None) -> Iterator[Any]:
    """Log how long ``operation`` took; failures are logged and re-raised.

    Usage:
        with log_timing(logger, "fetch_files", repository="owner/repo") as ctx_logger:
            ...
    """
    start_time = time.perf_counter()
    ctx_logger = log_with_context(logger_instance, **context)
    ctx_logger.debug(f"Starting {operation}")
    try:
        yield ctx_logger
    except Exception as exc:
        duration = time.perf_counter() - start_time
        ctx_logger.error(f"Failed {operation} after {duration:.3f}s: {exc}")
        raise
    duration = time.perf_counter() - start_time
    ctx_logger.debug(f"Completed {operation} in {duration:.3f}s")


def log_success(logger_instance, message: str, **context: str | int | None) -> None:
    """Log a success message with context."""
    log_with_context(logger_instance, **context).info(f"=== SUCCESS: {message} ===")


def log_failure(logger_instance, message: str, error: Exception | None = None, **context: str | int | None) -> None:
    """Log a failure message with context and optional error."""
    ctx_logger = log_with_context(logger_instance, **context)
    if error:
        ctx_logger.error(f"=== FAILURE: {message} | Error: {type(error).__name__}: {error} ===")
    else:
        ctx_logger.error(f"=== FAILURE: {message} ===")
