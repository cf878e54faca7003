"""Logging configuration for dircache."""

import json
import logging
import logging.handlers
import os
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

ROOT_LOGGER_NAME = "dircache"


class LogLevel(str, Enum):
    """Log levels for configuration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    SIMPLE = "simple"
    JSON = "json"


@dataclass
class LoggingConfig:
    """Configuration for logging system."""

    level: LogLevel = LogLevel.WARNING
    format_type: LogFormat = LogFormat.SIMPLE
    enable_console_logging: bool = True
    enable_file_logging: bool = False
    log_directory: str = str(Path.home() / ".dircache" / "logs")
    log_filename: str = "dircache.log"
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_colors: bool = True
    log_http_requests: bool = False
    # Each pattern's first group is kept, the rest of the match is redacted
    sensitive_data_patterns: List[str] = field(
        default_factory=lambda: [
            r"((?:client_secret|access_token|password)[\"']?\s*[=:]\s*[\"']?)[^\s&\"',]+",
            r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*",
            r"([$]?(?:deltatoken|skiptoken)=)[^\s&\"']+",
        ]
    )

    @classmethod
    def for_verbosity(cls, verbose: bool = False, debug: bool = False) -> "LoggingConfig":
        """Build a console configuration for the CLI verbosity flags."""
        if debug:
            return cls(level=LogLevel.DEBUG)
        if verbose:
            return cls(level=LogLevel.INFO)
        return cls()


class SensitiveDataFilter(logging.Filter):
    """Filter to redact secrets, bearer tokens and cursor links from log messages."""

    def __init__(self, patterns: List[str]) -> None:
        """
        Initialize the filter with sensitive data patterns.

        Args:
            patterns: List of regex patterns; the first group of each match is preserved
        """
        super().__init__()
        self.patterns = patterns
        self.compiled_patterns = [re.compile(pattern, re.IGNORECASE) for pattern in patterns]

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Filter log record to redact sensitive data.

        Returns:
            bool: Always True (we modify but don't filter out records)
        """
        if isinstance(record.msg, str):
            record.msg = self._redact_sensitive_data(record.msg)

        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self._redact_sensitive_data(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )

        return True

    def _redact_sensitive_data(self, text: str) -> str:
        """Redact sensitive data from text."""
        for pattern in self.compiled_patterns:
            text = pattern.sub(lambda m: f"{m.group(1)}[REDACTED]", text)
        return text


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record."""

    _STANDARD_ATTRS = set(
        logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_data = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS and not key.startswith("_")
        }
        if extra_data:
            log_data["extra"] = extra_data

        return json.dumps(log_data, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Console formatter with color support."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and self._supports_color()

    def _supports_color(self) -> bool:
        """Check if the terminal supports colors."""
        return (
            hasattr(sys.stderr, "isatty")
            and sys.stderr.isatty()
            and os.environ.get("TERM") != "dumb"
        )

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            reset = self.COLORS["RESET"]
            formatted = (
                f"{color}[{timestamp}] {record.levelname:<8}{reset} - "
                f"{record.name} - {record.getMessage()}"
            )
        else:
            formatted = f"[{timestamp}] {record.levelname:<8} - {record.name} - {record.getMessage()}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


class LoggingManager:
    """
    Centralized logging setup for dircache.

    Handlers are attached to the ``dircache`` logger so that module loggers
    created with ``logging.getLogger(__name__)`` inherit them.
    """

    def __init__(self, config: Optional[LoggingConfig] = None):
        self.config = config or LoggingConfig()
        self._handlers: List[logging.Handler] = []

    def setup_logging(self) -> logging.Logger:
        """Set up handlers on the package logger, replacing any installed earlier."""
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        root_logger.setLevel(getattr(logging, self.config.level.value))

        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers = []

        if self.config.enable_console_logging:
            self._handlers.append(self._create_console_handler())

        if self.config.enable_file_logging:
            Path(self.config.log_directory).mkdir(parents=True, exist_ok=True)
            self._handlers.append(self._create_file_handler())

        for handler in self._handlers:
            root_logger.addHandler(handler)

        self._configure_third_party_logging()
        return root_logger

    def _add_filters(self, handler: logging.Handler) -> None:
        if self.config.sensitive_data_patterns:
            handler.addFilter(SensitiveDataFilter(self.config.sensitive_data_patterns))

    def _create_console_handler(self) -> logging.Handler:
        """Create console handler with appropriate formatter."""
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(getattr(logging, self.config.level.value))

        formatter: logging.Formatter
        if self.config.format_type == LogFormat.JSON:
            formatter = StructuredFormatter()
        else:
            formatter = ColoredConsoleFormatter(use_colors=self.config.console_colors)

        handler.setFormatter(formatter)
        self._add_filters(handler)
        return handler

    def _create_file_handler(self) -> logging.Handler:
        """Create rotating file handler."""
        log_file = Path(self.config.log_directory) / self.config.log_filename

        handler = logging.handlers.RotatingFileHandler(
            filename=str(log_file),
            maxBytes=self.config.max_file_size_mb * 1024 * 1024,
            backupCount=self.config.backup_count,
            encoding="utf-8",
        )
        handler.setLevel(getattr(logging, self.config.level.value))

        formatter: logging.Formatter
        if self.config.format_type == LogFormat.JSON:
            formatter = StructuredFormatter()
        else:
            formatter = logging.Formatter(
                "[%(asctime)s] %(levelname)-8s - %(name)s - %(funcName)s:%(lineno)d - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )

        handler.setFormatter(formatter)
        self._add_filters(handler)
        return handler

    def _configure_third_party_logging(self) -> None:
        """Reduce noise from the SDK and HTTP client libraries."""
        level = logging.DEBUG if self.config.log_http_requests else logging.WARNING
        for logger_name in ["boto3", "botocore", "aiohttp", "urllib3", "asyncio"]:
            logging.getLogger(logger_name).setLevel(level)


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Set up logging for dircache.

    Args:
        config: Logging configuration

    Returns:
        logging.Logger: The configured package logger
    """
    return LoggingManager(config).setup_logging()

