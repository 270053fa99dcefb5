"""
File logging setup for the enhanced logging system.

Each subsystem of the central server writes to its own category file, plus
warnings/errors aggregators and a console log, under
``{log_base}/{environment}/``.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from .logging_utilities import ensure_log_directory, resolve_log_base, rotate_log_files

LOG_CATEGORIES: dict[str, list[str]] = {
    "server": ["central_server.app", "central_server.main", "central_server.container", "uvicorn"],
    "realtime": ["central_server.realtime", "central_server.api.realtime"],
    "sync": ["central_server.sync"],
    "monitoring": ["central_server.monitoring", "central_server.api.route_discovery"],
    "persistence": ["central_server.persistence", "central_server.database", "sqlalchemy"],
}


class LoggerNameFilter(logging.Filter):
    """Only allow records from loggers matching the configured prefixes."""

    def __init__(self, allowed_prefixes: list[str]) -> None:
        super().__init__()
        self.allowed_prefixes = allowed_prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        logger_name = record.name
        for prefix in self.allowed_prefixes:
            if logger_name == prefix or logger_name.startswith(f"{prefix}."):
                return True
        return False


def _convert_max_size_to_bytes(max_size_str: str | int) -> int:
    """Convert max_size string to bytes."""
    if isinstance(max_size_str, str):
        if max_size_str.endswith("MB"):
            return int(max_size_str[:-2]) * 1024 * 1024
        if max_size_str.endswith("KB"):
            return int(max_size_str[:-2]) * 1024
        if max_size_str.endswith("B"):
            return int(max_size_str[:-1])
        return int(max_size_str)
    return max_size_str


def _create_file_handler(log_path: Path, max_bytes: int, backup_count: int, level: int) -> logging.Handler:
    """
    Create a rotating file handler, degrading to NullHandler if the file cannot be opened.
    """
    ensure_log_directory(log_path)
    try:
        handler: logging.Handler = RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    except OSError:
        return logging.NullHandler()
    handler.setLevel(level)
    # structlog has already rendered timestamp, logger name and level into the message
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def setup_enhanced_file_logging(environment: str, log_config: dict[str, Any], log_level: str) -> list[logging.Handler]:
    """
    Attach category, aggregator and console file handlers.

    Args:
        environment: Environment name used as the log sub-directory
        log_config: Logging configuration dictionary
        log_level: Minimum level for category handlers

    Returns:
        The handlers that were installed
    """
    env_log_dir = resolve_log_base(log_config.get("log_base", "logs")) / environment
    rotate_log_files(env_log_dir)

    rotation = log_config.get("rotation", {})
    max_bytes = _convert_max_size_to_bytes(rotation.get("max_size", "100MB"))
    backup_count = int(rotation.get("backup_count", 5))
    level = getattr(logging, str(log_level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    installed: list[logging.Handler] = []

    for log_file, prefixes in LOG_CATEGORIES.items():
        handler = _create_file_handler(env_log_dir / f"{log_file}.log", max_bytes, backup_count, level)
        handler.addFilter(LoggerNameFilter(prefixes))
        root_logger.addHandler(handler)
        installed.append(handler)

    for aggregator, aggregator_level in (("warnings", logging.WARNING), ("errors", logging.ERROR)):
        handler = _create_file_handler(env_log_dir / f"{aggregator}.log", max_bytes, backup_count, aggregator_level)
        root_logger.addHandler(handler)
        installed.append(handler)

    console_handler = _create_file_handler(env_log_dir / "console.log", max_bytes, backup_count, level)
    root_logger.addHandler(console_handler)
    installed.append(console_handler)

    return installed
