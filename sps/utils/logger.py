"""Structured logging setup (structlog over stdlib logging)"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

import structlog

_configured = False


def setup_logger(
    log_level: str = "INFO",
    log_format: str = "json",
    file_path: Optional[str] = None,
    max_bytes: int = 10485760,
    backup_count: int = 5,
) -> None:
    """
    Configure stdlib logging handlers and the structlog processor chain.

    Args:
        log_level: Root log level name
        log_format: "json" for machine-readable lines, anything else for console output
        file_path: Optional rotating log file
        max_bytes: Rotation size for the log file
        backup_count: Number of rotated files to keep
    """
    global _configured

    level = getattr(logging, str(log_level).upper(), logging.INFO)

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if file_path:
        Path(file_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                file_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
    root.setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str):
    """Return a structlog logger bound to ``name``; configures defaults on first use."""
    if not _configured:
        setup_logger()
    return structlog.get_logger(name)
