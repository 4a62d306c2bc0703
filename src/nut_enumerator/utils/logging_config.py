"""Logging configuration for the NUT driver enumerator.

Provides configurable logging with:
- Console output for the service manager's journal
- Optional file-based logging with rotation
- Performance timing decorators for backend calls

Environment Variables:
    NUT_ENUMERATOR_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    NUT_ENUMERATOR_LOG_FILE: Path to log file (default: no log file)
    NUT_ENUMERATOR_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    NUT_ENUMERATOR_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from nut_enumerator.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("register")
    def register_instance(self, device):
        ...
"""
import functools
import logging
import os
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("nut_enumerator.perf")
main_logger = logging.getLogger("nut_enumerator")

MAIN_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-32s | %(levelname)-7s | %(message)s"
PERF_FORMAT = "%(asctime)s.%(msecs)03d | PERF | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("NUT_ENUMERATOR_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Optional[Path]:
    """Get log file path from environment, None when file logging is off."""
    path_str = os.environ.get("NUT_ENUMERATOR_LOG_FILE", "")
    return Path(path_str) if path_str else None


def setup_logging(level: Optional[int] = None) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects NUT_ENUMERATOR_LOG_LEVEL)
    - File handler with rotation (DEBUG level) when NUT_ENUMERATOR_LOG_FILE is set
    - Performance logger for timing metrics (DEBUG only, console)

    Calling it again replaces the handlers installed by a previous call.
    """
    log_level = level if level is not None else get_log_level()
    log_file = get_log_file()

    main_format = logging.Formatter(MAIN_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    main_logger.handlers.clear()
    main_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    main_logger.addHandler(console_handler)

    perf_logger.handlers.clear()
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.propagate = False  # timing lines stay out of the main console
    if log_level <= logging.DEBUG:
        perf_console = logging.StreamHandler()
        perf_console.setFormatter(logging.Formatter(PERF_FORMAT, datefmt=DATE_FORMAT))
        perf_logger.addHandler(perf_console)

    if log_file is not None:
        max_size_mb = int(os.environ.get("NUT_ENUMERATOR_LOG_MAX_SIZE", "10"))
        backup_count = int(os.environ.get("NUT_ENUMERATOR_LOG_BACKUPS", "5"))

        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(main_format)
        main_logger.addHandler(file_handler)
        perf_logger.addHandler(file_handler)

    main_logger.debug(
        f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file or 'none'}"
    )


def _subject_of(args: tuple) -> str:
    """Best-effort name of the device or instance a call operates on."""
    if len(args) < 2:
        return "N/A"
    subject = args[1]
    if isinstance(subject, str):
        return subject
    return str(getattr(subject, "name", subject))


def timed(operation: str):
    """Decorator to log execution time of a backend method.

    The subject column is taken from the first positional argument after
    self (a device section or an instance identifier).

    Usage:
        @timed("unregister")
        def unregister_instance(self, identifier):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            subject = _subject_of(args)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(
                    f"{operation:20s} | {subject:20s} | {elapsed:8.2f}ms | FAIL: {e}"
                )
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(f"{operation:20s} | {subject:20s} | {elapsed:8.2f}ms | OK")
            return result

        return wrapper

    return decorator


@contextmanager
def timed_section(operation: str, subject: Optional[str] = None, **extra):
    """Context manager for timing code sections.

    Usage:
        with timed_section("reconcile", subject="ups.conf", devices=3):
            ...
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:20s} | {subject or 'N/A':20s} | {elapsed:8.2f}ms | FAIL: {e}"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise

    elapsed = (time.perf_counter() - start) * 1000
    msg = f"{operation:20s} | {subject or 'N/A':20s} | {elapsed:8.2f}ms | OK"
    if extra_str:
        msg += f" | {extra_str}"
    perf_logger.info(msg)
