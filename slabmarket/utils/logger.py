"""
Colour/emoji logging for the API, the verification pipeline and the catalog ETL.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Optional


class HealthCheckFilter(logging.Filter):
    """Filter to suppress health check access logs from Uvicorn."""

    def filter(self, record):
        if hasattr(record, "args") and record.args:
            # uvicorn.access args: (client, method, path, http_version, status)
            if isinstance(record.args, tuple) and len(record.args) >= 3:
                path = record.args[2]
                if isinstance(path, str) and path.startswith("/health"):
                    return False

        if hasattr(record, "msg") and isinstance(record.msg, str):
            if "GET /health" in record.msg:
                return False

        return True


class ColorFormatter(logging.Formatter):
    """Custom formatter with colors and emojis for terminal output."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
        "BOLD": "\033[1m",
        "DIM": "\033[2m",
    }

    EMOJIS = {
        "DEBUG": "🔍",
        "INFO": "✅",
        "WARNING": "⚠️",
        "ERROR": "❌",
        "CRITICAL": "🚨",
    }

    # Component emojis, matched against the logger name
    COMPONENT_EMOJIS = {
        "verify": "🛡️",
        "scraper": "🔍",
        "api": "🌐",
        "etl": "📦",
        "scheduler": "⏰",
        "httpx": "✈️ ",
        "supabase": "💾",
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelname, "")
        reset = self.COLORS["RESET"]
        bold = self.COLORS["BOLD"]
        dim = self.COLORS["DIM"]

        emoji = self.EMOJIS.get(record.levelname, "📝")

        component_emoji = ""
        for component, comp_emoji in self.COMPONENT_EMOJIS.items():
            if component in record.name.lower():
                component_emoji = comp_emoji
                break

        timestamp = datetime.now().strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        logger_name = record.name.split(".")[-1][:12]

        formatted_msg = (
            f"{dim}[{timestamp}]{reset} "
            f"{emoji} {level_color}{bold}{level}{reset} "
            f"{dim}│{reset} "
            f"{component_emoji} {bold}{logger_name:<12}{reset} "
            f"{dim}│{reset} "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            formatted_msg += f"\n{self.formatException(record.exc_info)}"

        return formatted_msg


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Setup a logger with colors and emojis.

    Args:
        name: Logger name (usually "slabmarket.<component>")
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to
            the LOG_LEVEL environment variable, then INFO.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, level, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level, logging.INFO))
    handler.setFormatter(ColorFormatter())

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def log_api_request(
    logger: logging.Logger, method: str, endpoint: str, params: Optional[dict] = None
):
    """Log API request in a compact format."""
    params_str = f" {params}" if params else ""
    logger.info(f"🌐 {method} {endpoint}{params_str}")


def log_import_progress(logger: logging.Logger, current: int, total: int, label: str):
    """Log catalog import progress."""
    percentage = (current / total * 100) if total > 0 else 0
    logger.info(f"📦 Importing [{current}/{total}] {percentage:.1f}% - {label}")


def log_database_operation(
    logger: logging.Logger, operation: str, count: int, table: str
):
    """Log database operation."""
    logger.info(f"💾 {operation} {count} records to {table}")


# Module-level loggers
api_logger = setup_logger("slabmarket.api")
verify_logger = setup_logger("slabmarket.verify")
scraper_logger = setup_logger("slabmarket.scraper")
etl_logger = setup_logger("slabmarket.etl")
scheduler_logger = setup_logger("slabmarket.scheduler")
httpx_logger = setup_logger("slabmarket.httpx")
supabase_logger = setup_logger("slabmarket.supabase")


def log_success(logger: logging.Logger, message: str):
    """Log a successful outcome with an explicit [OK] tag."""
    logger.info(f"[OK] {message}")


def log_failure(logger: logging.Logger, message: str):
    """Log a failed outcome with an explicit [FAIL] tag."""
    logger.error(f"[FAIL] {message}")
