"""
DeployHook — Deploy serializer.

At most one deploy runs per project root. The lock is an explicit state
machine with a single holder token:

  IDLE → RUNNING → IDLE
  IDLE → RUNNING → FAILED → IDLE

A trigger arriving while RUNNING is rejected, not queued. A lock held
longer than the staleness ceiling is force-released on the next acquire
attempt, so a crashed build cannot wedge the project forever.
"""

from __future__ import annotations

import enum
import threading
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

from pydantic import BaseModel

from deployhook.errors import DeployInProgressError
from deployhook.utils.logging import logger


class LockState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


class SerializerSnapshot(BaseModel):
    state: LockState
    holder: str | None = None
    held_seconds: float = 0.0
    last_outcome: str | None = None
    stale_releases: int = 0


class DeploySerializer:
    def __init__(
        self,
        project: str,
        stale_after: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.project = project
        self.stale_after = stale_after
        self._clock = clock
        self._mutex = threading.Lock()
        self._state = LockState.IDLE
        self._holder: str | None = None
        self._acquired_at: float | None = None
        self._last_outcome: str | None = None
        self._stale_releases = 0

    @property
    def state(self) -> LockState:
        return self._state

    @property
    def holder(self) -> str | None:
        return self._holder

    def _held_seconds(self) -> float:
        if self._acquired_at is None:
            return 0.0
        return self._clock() - self._acquired_at

    def try_acquire(self, holder: str) -> bool:
        with self._mutex:
            if self._state is LockState.RUNNING:
                held = self._held_seconds()
                if held <= self.stale_after:
                    return False
                logger.critical(
                    "[%s] Force-releasing stale deploy lock held by %s for %.0fs "
                    "(ceiling %.0fs). The previous deploy may still be running.",
                    self.project, self._holder, held, self.stale_after,
                )
                self._stale_releases += 1
                self._last_outcome = "stale"
            elif self._state is LockState.FAILED:
                logger.info("[%s] Previous deploy failed, lock is free again", self.project)

            self._state = LockState.RUNNING
            self._holder = holder
            self._acquired_at = self._clock()
            logger.info("[%s] Deploy lock acquired by %s", self.project, holder)
            return True

    def release(self, holder: str, failed: bool = False) -> bool:
        """Release the lock if `holder` still owns it. Returns whether it did."""
        with self._mutex:
            if self._holder != holder:
                logger.warning(
                    "[%s] Ignoring release by %s: lock is held by %s",
                    self.project, holder, self._holder,
                )
                return False

            held = self._held_seconds()
            if failed:
                logger.warning("[%s] Deploy %s failed after %.1fs", self.project, holder, held)
            self._last_outcome = "failed" if failed else "succeeded"
            self._state = LockState.FAILED if failed else LockState.IDLE
            self._holder = None
            self._acquired_at = None
            logger.info("[%s] Deploy lock released by %s", self.project, holder)
            return True

    def snapshot(self) -> SerializerSnapshot:
        with self._mutex:
            return SerializerSnapshot(
                state=self._state,
                holder=self._holder,
                held_seconds=round(self._held_seconds(), 1),
                last_outcome=self._last_outcome,
                stale_releases=self._stale_releases,
            )

    @asynccontextmanager
    async def hold(self, holder: str) -> AsyncIterator[None]:
        """Hold the lock for the body; raise DeployInProgressError when busy."""
        if not self.try_acquire(holder):
            snap = self.snapshot()
            logger.warning(
                "[%s] Rejecting %s: deploy %s already running for %.0fs",
                self.project, holder, snap.holder, snap.held_seconds,
            )
            raise DeployInProgressError(snap.holder, snap.held_seconds)
        failed = True
        try:
            yield
            failed = False
        finally:
            self.release(holder, failed=failed)


class SerializerRegistry:
    """One serializer per resolved project path."""

    def __init__(self, stale_after: float = 600.0):
        self.stale_after = stale_after
        self._serializers: dict[str, DeploySerializer] = {}
        self._mutex = threading.Lock()

    def for_project(self, project_path: str | Path) -> DeploySerializer:
        key = str(Path(project_path).resolve())
        with self._mutex:
            if key not in self._serializers:
                self._serializers[key] = DeploySerializer(key, stale_after=self.stale_after)
            return self._serializers[key]

