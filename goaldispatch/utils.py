"""
Utility functions for goaldispatch.

Includes logging setup and JSON helpers used by the CLI.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "pretty",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for the dispatcher.

    Args:
        log_file: Optional path to log file
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured "goaldispatch" logger
    """
    logger = logging.getLogger("goaldispatch")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(StructuredFormatter())

        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "goal"):
            log_data["goal"] = record.goal
        if hasattr(record, "event"):
            log_data["event"] = record.event
        if hasattr(record, "metadata"):
            log_data["metadata"] = record.metadata

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def read_json(path: Path) -> Any:
    """
    Read a JSON document; "-" reads stdin.

    Raises:
        ValueError: If the content is not valid JSON
    """
    if str(path) == "-":
        import sys
        text = sys.stdin.read()
    else:
        text = Path(path).read_text()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e


def dump_json(data: Any) -> str:
    """Pretty JSON for terminal output."""
    return json.dumps(data, indent=2, sort_keys=True)
