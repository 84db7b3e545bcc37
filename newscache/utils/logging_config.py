"""
Centralized logging configuration for the news cache.

- Color-coded console output
- Optional daily-rotated file logging plus a separate error log
- Optional structured JSON logging
- Stage timing helpers
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
import json


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if hasattr(record, 'extra_data'):
            log_entry['extra'] = record.extra_data

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Colored console formatter: [date][logger][LEVEL] message"""

    COLORS = {
        'DEBUG': '\033[32m',    # Green
        'INFO': '\033[90m',     # Bright black
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = (
            f"{color}[{self.formatTime(record, '%Y-%m-%d %H:%M:%S')}][{record.name}]"
            f"[{record.levelname}] {record.getMessage()}{self.RESET}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    enable_file_logging: bool = False,
    enable_structured_logging: bool = False
) -> None:
    """
    Configure root logging for the news cache.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (defaults to 'logs')
        enable_file_logging: Whether to write logs to files
        enable_structured_logging: Whether to use JSON structured logging
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    if enable_structured_logging:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    if enable_file_logging:
        log_path = Path(log_dir) if log_dir else Path.cwd() / "logs"
        log_path.mkdir(parents=True, exist_ok=True)

        daily_handler = logging.handlers.TimedRotatingFileHandler(
            log_path / "news_cache.log",
            when='midnight',
            backupCount=7,
            encoding='utf-8'
        )
        daily_handler.setLevel(logging.DEBUG)
        if enable_structured_logging:
            daily_handler.setFormatter(StructuredFormatter())
        else:
            daily_handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s'
            ))
        root_logger.addHandler(daily_handler)

        # Separate error log
        error_handler = logging.FileHandler(log_path / "errors.log", encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)-28s | %(funcName)s:%(lineno)d | %(message)s'
        ))
        root_logger.addHandler(error_handler)

    configure_pipeline_loggers(log_level)


def configure_pipeline_loggers(log_level: str) -> None:
    """Per-component logger levels."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Fetcher logs one line per feed at DEBUG
    logging.getLogger('newscache.services.rss').setLevel(level)

    # Image cache logs one line per image at DEBUG
    logging.getLogger('newscache.services.image_cache').setLevel(max(level, logging.INFO))

    logging.getLogger('newscache.services.cache_service').setLevel(level)
    logging.getLogger('newscache.main').setLevel(level)

    # Third-party noise
    logging.getLogger('aiosqlite').setLevel(logging.WARNING)
    logging.getLogger('PIL').setLevel(logging.WARNING)


class PerformanceTracker:
    """Context manager for timing a pipeline stage."""

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None):
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time: Optional[datetime] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.debug(f"⏱️ Starting: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            self.duration_ms = (datetime.now() - self.start_time).total_seconds() * 1000

            if exc_type:
                self.logger.error(f"💥 Failed: {self.operation_name} ({self.duration_ms:.1f}ms) - {exc_val}")
            else:
                self.logger.debug(f"✅ Completed: {self.operation_name} ({self.duration_ms:.1f}ms)")
        return False


def log_pipeline_metrics(
    logger: logging.Logger,
    stage: str,
    input_count: int,
    output_count: int,
    duration_ms: float,
    **extra_data
):
    """Log structured stage metrics."""
    metrics = {
        'stage': stage,
        'input_count': input_count,
        'output_count': output_count,
        'duration_ms': duration_ms,
        **extra_data
    }

    logger.info(f"📊 {stage}: {input_count} → {output_count} ({duration_ms:.1f}ms)", extra={'extra_data': metrics})
