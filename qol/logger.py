# qol/logger.py
from __future__ import annotations
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional
import logging

from config.config import LOG_DIR

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logger(
    name: Optional[str] = "trace_isa",
    log_dir: Path = LOG_DIR,
    log_file: str = "pipeline.log",
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    output: str = "both",
) -> logging.Logger:
    """
    Configure and return the pipeline logger.

    Parameters
    ----------
    name : str, optional
        Logger name; stage modules log through children of it.
    log_dir : Path
        Directory holding the rotating log file.
    log_file : str
        Log file name inside log_dir.
    level : int
        Logging level for the logger and its handlers.
    max_bytes, backup_count : int
        Rotation settings for the file handler.
    output : str
        "file", "console", or "both".

    Returns
    -------
    logging.Logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Handlers are attached once per process.
    if logger.handlers:
        return logger

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    if output in {"file", "both"}:
        log_dir = Path(log_dir)
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RuntimeError(f"Failed to create log directory {log_dir}: {e}") from e
        file_handler = RotatingFileHandler(
            log_dir / log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if output in {"console", "both"}:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(stage: str) -> logging.Logger:
    """Child logger for a pipeline stage, e.g. get_logger("S01")."""
    return logging.getLogger(f"trace_isa.{stage}")
