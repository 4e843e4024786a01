# app_logger.py
"""
A small wrapper around the standard library `logging` module.
All parts of the program get their logger from here, so we have a single
source of truth for log configuration.
"""

import logging
import sys
from collections import deque
from pathlib import Path
from typing import Deque, Optional

# ----------------------------------------------------------------------
# 1️⃣ The "amptop" logger – every module logs through a child of it
# ----------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

logger = logging.getLogger("amptop")
logger.setLevel(logging.INFO)
logger.propagate = False               # keep records away from the root logger

# ----------------------------------------------------------------------
# 2️⃣ In‑memory handler – stores the last N log records for the UI
# ----------------------------------------------------------------------
MAX_LOG_RECORDS = 200


class MemoryHandler(logging.Handler):
    """
    Keeps the newest N formatted log strings in a deque.  The curses log
    view reads `handler.buffer` at any time.
    """
    def __init__(self, capacity: int = MAX_LOG_RECORDS):
        super().__init__()
        self.capacity = capacity
        self.buffer: Deque[str] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        msg = self.format(record)
        self.buffer.append(msg)


formatter = logging.Formatter(LOG_FORMAT)

memory_handler = MemoryHandler()
memory_handler.setFormatter(formatter)
memory_handler.setLevel(logging.INFO)     # DEBUG goes to the file only
logger.addHandler(memory_handler)

# Export the buffer so the view can read it without importing the whole logger.
log_buffer = memory_handler.buffer


def get_logger(name: str) -> logging.Logger:
    """Child logger, e.g. ``get_logger(__name__)`` → ``amptop.daemon``."""
    if name == "amptop" or name.startswith("amptop."):
        return logging.getLogger(name)
    return logger.getChild(name)


def setup_logging(log_path: Optional[Path] = None, level: str = "INFO",
                  stream: bool = False) -> None:
    """
    Attach the file (and optionally stderr) handlers.  Called once per
    process by the CLI; calling it again replaces the previous handlers.
    """
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        if handler is not memory_handler:
            logger.removeHandler(handler)
            handler.close()

    if log_path is not None:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level.upper())
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if stream:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level.upper())
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)
