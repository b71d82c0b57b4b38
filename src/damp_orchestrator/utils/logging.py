"""Logging utilities for DAMP Orchestrator."""

import logging
import sys

from pythonjsonlogger import jsonlogger

# docker-py logs every HTTP round trip to the daemon
CHATTY_LOGGERS = ("urllib3", "docker", "aiosqlite")


def _formatter(log_format: str) -> logging.Formatter:
    if log_format.lower() == "json":
        return jsonlogger.JsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
            timestamp=True,
        )
    return logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure the root logger for the server process.

    Records go to stderr because stdout carries the stdio MCP transport.
    Docker client and driver loggers are capped at WARNING unless the
    requested level is DEBUG.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format type (json or text)
    """
    level = getattr(logging, log_level.upper())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(_formatter(log_format))
    root.addHandler(handler)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given name.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
