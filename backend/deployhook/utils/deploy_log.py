"""
DeployHook — Append-only deploy log.

One logger per log file, with a delayed FileHandler so nothing is created
on disk until the first deploy writes to it. Every record is flushed as a
single line, which keeps concurrent readers of /logs safe.
"""

from __future__ import annotations

import hashlib
import logging
from collections import deque
from pathlib import Path

from deployhook.utils.logging import logger

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"


class DeployLog:
    """Writes deploy events to the persisted log file and reads its tail."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        digest = hashlib.sha1(str(self.path.resolve()).encode()).hexdigest()[:10]
        # Child of the package logger so every line is echoed to the console too.
        self._logger = logging.getLogger(f"deployhook.deploy.{digest}")
        self._logger.setLevel(logging.INFO)
        if not self._logger.handlers:
            fh = logging.FileHandler(self.path, encoding="utf-8", delay=True)
            fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
            self._logger.addHandler(fh)

    def write(self, message: str, level: int = logging.INFO) -> None:
        if not self.path.parent.is_dir():
            logger.warning("Deploy log directory missing, line not persisted: %s", message)
            return
        self._logger.log(level, message)

    def info(self, message: str) -> None:
        self.write(message, logging.INFO)

    def warning(self, message: str) -> None:
        self.write(message, logging.WARNING)

    def error(self, message: str) -> None:
        self.write(message, logging.ERROR)

    def tail(self, lines: int) -> list[str]:
        """Last `lines` lines of the log, or [] when nothing was logged yet."""
        if lines <= 0 or not self.path.is_file():
            return []
        with self.path.open("r", encoding="utf-8", errors="replace") as fh:
            return [line.rstrip("\n") for line in deque(fh, maxlen=lines)]

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
