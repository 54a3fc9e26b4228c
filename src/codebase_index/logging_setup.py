# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Structured logging setup for codebase indexing.

Every run writes one JSON object per line to a dated file under the log
directory. Records of interest:
- indexer: stage transitions (DEBUG), per-file issues (WARNING), the run
  summary (INFO) whose extra_fields carry the run metadata
- serializer: artifact writes with format and size
- token_counter: encoder load failures before the word-count fallback

Console output is plain text on stderr so stdout stays free for command
output.
"""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_LOG_DIR_NAME = ".codebase_index_logs"

# Keys set by the formatter; extra_fields cannot replace them
_RECORD_KEYS = ("timestamp", "level", "logger", "message", "thread", "exception")


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for indexing logs.

    Records emitted from parser worker threads carry the thread name so the
    per-file warnings of a parallel run can be told apart. Run statistics
    passed as extra={"extra_fields": {...}} become top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.threadName and record.threadName != threading.main_thread().name:
            log_data["thread"] = record.threadName

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            for key, value in extra_fields.items():
                if key not in _RECORD_KEYS:
                    log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: int = logging.INFO,
    console_output: bool = True,
) -> Path:
    """Set up structured logging for the application.

    Args:
        log_dir: Directory for log files. If None, uses .codebase_index_logs/
        log_level: Logging level (default: INFO)
        console_output: Whether to also output to stderr (default: True)

    Returns:
        Path of the JSON-lines log file.
    """
    if log_dir is None:
        log_dir = Path.cwd() / DEFAULT_LOG_DIR_NAME

    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    log_file = log_dir / f"codebase_index_{datetime.now(timezone.utc).strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(file_handler)

    # stdout carries command output, so console logs go to stderr
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    logging.info(f"Logging initialized. Log directory: {log_dir}")
    return log_file
