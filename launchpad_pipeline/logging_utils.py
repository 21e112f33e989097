"""
Logging setup and masking helpers.

Owner addresses of a portfolio are derived privacy addresses;
log lines show them shortened. RPC URLs often embed an API key
in the path or query; log lines show only the host.
"""

import json
import logging
import sys
from typing import Optional
from urllib.parse import urlsplit


TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Configure the root logger with a single stdout handler.

    Args:
        level: Log level name
        log_format: "text" or "json"

    Returns:
        The package logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # Third-party loggers stay at WARNING or above
    for name in ("aiohttp", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    return logging.getLogger("launchpad_pipeline")


def mask_address(address: Optional[str], show_chars: int = 6) -> str:
    """
    Shorten an address to its first and last characters.

    0x04a1b2c3d4e5f6... -> 0x04a1...e5f6
    """
    if not address:
        return "***"
    if len(address) <= show_chars * 2 + 2:
        return address
    return f"{address[:show_chars]}...{address[-4:]}"


def mask_url(url: Optional[str]) -> str:
    """Keep scheme and host of a URL, hide path and query."""
    if not url:
        return "***"
    parts = urlsplit(url)
    if not parts.netloc:
        return "***"
    host = parts.hostname or ""
    port = f":{parts.port}" if parts.port else ""
    return f"{parts.scheme}://{host}{port}/***"
