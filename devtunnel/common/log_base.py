"""
Logging for DevTunnel, built on Loguru.

Structured context is passed as keyword arguments and rendered after the
message, e.g. ``logger.info("Tunnel active", tunnel_id=tid)``.
"""

import sys
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from loguru import logger


class LogFormat:
    """Log formatting configuration."""

    VALID_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
    DEFAULT_LOG_DIR = Path("logs")

    @staticmethod
    def _format_extra(record):
        """Render extra fields, skipping the bound module name."""
        extra = {k: v for k, v in record["extra"].items() if k != "module_name"}
        if not extra:
            return ""
        # Escape braces so loguru does not treat values as format fields
        text = " | ".join(f"{k}={v}" for k, v in extra.items())
        return text.replace("{", "{{").replace("}", "}}")

    @staticmethod
    def console_formatter(record):
        """Coloured console format."""
        base = (
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

        extra_str = LogFormat._format_extra(record)
        if extra_str:
            base += f" | <dim>{extra_str}</dim>"

        return base + "\n{exception}"

    @staticmethod
    def file_formatter(record):
        """Plain file format, one record per line."""
        base = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

        extra_str = LogFormat._format_extra(record)
        if extra_str:
            base += f" | {extra_str}"

        return base + "\n{exception}"


def _add_file_sink(log_dir: str | Path, level: str, production: bool) -> None:
    log_dir_path = Path(log_dir)
    log_dir_path.mkdir(parents=True, exist_ok=True)

    today = datetime.now().strftime("%Y%m%d")
    log_file = log_dir_path / f"devtunnel_{today}.log"

    logger.add(
        str(log_file),
        format=LogFormat.file_formatter,
        level=level,
        rotation="1 day",
        retention="30 days",
        compression="gz",
        encoding="utf-8",
        backtrace=not production,
        diagnose=not production,
    )


def setup_logging(
    level: str = "INFO", log_dir: str | Path | None = None, environment: str = "development"
) -> None:
    """
    Configure the Loguru sinks.

    In production only a rotating file sink is installed (under ``log_dir`` or
    ``./logs``). In development a coloured stderr sink is installed, plus a
    file sink when ``log_dir`` is given.

    Raises:
        ValueError: If ``level`` is not a Loguru level name
    """
    level = level.upper()
    if level not in LogFormat.VALID_LEVELS:
        raise ValueError(
            f"Invalid log level: {level}. Must be one of {sorted(LogFormat.VALID_LEVELS)}"
        )

    logger.remove()

    if environment == "production":
        _add_file_sink(log_dir or LogFormat.DEFAULT_LOG_DIR, level, production=True)
        return

    logger.add(
        sys.stderr,
        format=LogFormat.console_formatter,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=True,
    )
    if log_dir:
        _add_file_sink(log_dir, level, production=False)


def get_logger(name: str):
    """Return a logger bound to the calling module."""
    return logger.bind(module_name=name)


@contextmanager
def log_operation(operation_name: str, **context):
    """Log the duration and outcome of a block."""
    start = time.perf_counter()
    ctx_logger = logger.bind(operation=operation_name, **context)

    try:
        yield ctx_logger
        duration = round((time.perf_counter() - start) * 1000, 1)
        ctx_logger.info(f"{operation_name} completed", duration_ms=duration)
    except Exception as e:
        duration = round((time.perf_counter() - start) * 1000, 1)
        ctx_logger.error(f"{operation_name} failed", error=str(e), duration_ms=duration)
        raise


__all__ = [
    "setup_logging",
    "get_logger",
    "log_operation",
    "logger",
]
