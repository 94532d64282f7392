"""
DeployHook — Console logging and step duration tracking.

Everything logs through the package logger `deployhook`. The deploy log
file (utils/deploy_log.py) hangs off it as a child, so deploy lines reach
the console as well.
"""

import logging
import os
import time
from contextlib import contextmanager
from typing import Iterator

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
LOG_DATEFMT = "%H:%M:%S"

logger = logging.getLogger("deployhook")


def configure_logging(level: str = "INFO") -> int:
    """Install the console handler once and apply `level` to the package logger."""
    logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        logger.warning("Unknown log level %r, falling back to INFO", level)
        resolved = logging.INFO
    logger.setLevel(resolved)
    return resolved


configure_logging(os.getenv("LOG_LEVEL", "INFO"))


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


@contextmanager
def step_timer(step_name: str) -> Iterator[None]:
    """Log start and duration of a step. A step that raises is logged as failed."""
    logger.info("▶ %s", step_name)
    start = time.perf_counter()
    try:
        yield
    except Exception as exc:
        logger.warning("✘ %s failed after %.0f ms (%s)", step_name, _elapsed_ms(start), type(exc).__name__)
        raise
    logger.info("✔ %s done in %.0f ms", step_name, _elapsed_ms(start))
