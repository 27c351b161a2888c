"""
Logging configuration for the certificate probe.

Standard output belongs to the monitoring supervisor, so console logging
always goes to standard error.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from tls_cert_probe.config import CheckConfig


class CustomFormatter(logging.Formatter):
    """Custom formatter with colored output for console."""

    # Color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",  # Reset
    }

    def __init__(self, use_color: bool = True) -> None:
        self.use_color = use_color
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with optional colors."""
        if self.use_color and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            reset = self.COLORS["RESET"]
            level_name = f"{color}{record.levelname:<8}{reset}"
        else:
            level_name = f"{record.levelname:<8}"

        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        message = record.getMessage()

        if record.exc_info:
            if not message.endswith("\n"):
                message += "\n"
            message += self.formatException(record.exc_info)

        return f"{timestamp} | {level_name} | {record.name:<28} | {message}"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    EXTRA_FIELDS = ("endpoint", "protocol", "step", "error_type", "days_remaining", "subject")

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(config: CheckConfig) -> None:
    """
    Setup logging configuration.

    Args:
        config: Configuration object
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.log_level))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, config.log_level))
    use_color = hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
    console_handler.setFormatter(CustomFormatter(use_color=use_color))
    root_logger.addHandler(console_handler)

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Rotating file handler (1MB max, 3 backups)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file, maxBytes=1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setLevel(getattr(logging, config.log_level))
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    app_logger = logging.getLogger("tls_cert_probe")
    app_logger.debug(f"Logging initialized - Level: {config.log_level}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return logging.getLogger(f"tls_cert_probe.{name}")


def log_negotiation_step(
    logger: logging.Logger, endpoint: str, protocol: str, step: str, reply: Optional[str] = None
) -> None:
    """Log one step of a STARTTLS preamble."""
    message = f"{protocol or 'tls'} {step}" + (f" -> {reply}" if reply is not None else "")
    logger.debug(message, extra={"endpoint": endpoint, "protocol": protocol, "step": step})


def log_certificate_fetched(logger: logging.Logger, endpoint: str, subject: str) -> None:
    """Log successful certificate retrieval."""
    logger.info(
        f"Certificate fetched from {endpoint}: {subject}",
        extra={"endpoint": endpoint, "subject": subject},
    )


def log_check_error(logger: logging.Logger, endpoint: str, error: Exception) -> None:
    """Log a failure that aborts the check."""
    logger.error(
        f"Certificate check failed: {error}",
        extra={"endpoint": endpoint, "error_type": type(error).__name__},
    )
