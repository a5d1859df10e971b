"""Loguru setup for the call relay.

Console output is human-readable. In production a second sink writes one
JSON object per line so call logs can be shipped and filtered by module.
"""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> | "
    "<level>{message}</level>"
)


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    enable_file: bool = False,
) -> None:
    """Configure application logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for the JSON log file
        enable_file: Whether to add the rotating JSON file sink
    """
    logger.remove()
    logger.configure(extra={"name": "callrelay"})

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if enable_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / "callrelay.jsonl",
            level=level,
            serialize=True,
            rotation="100 MB",
            retention=10,
            enqueue=True,
        )

    logger.info(f"Logging initialized at {level} level")


def get_logger(name: str) -> "logger":
    """Logger bound to a module name, shown in the console sink."""
    return logger.bind(name=name)


def mask_sid(sid: str) -> str:
    """Shorten a provider identifier for logs: CA1234...cdef -> CA12...cdef."""
    if not sid or len(sid) <= 10:
        return sid or "-"
    return f"{sid[:4]}...{sid[-4:]}"
