"""
DeployHook — Deploy job and pipeline output contracts.

Every deploy produces a DeployJob with full traceability:
trigger commit, step timings, captured output and the published release.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from deployhook.models.release import BuildArtifact


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PUBLISHED_UNHEALTHY = "published_unhealthy"


FINAL_STATUSES = {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.PUBLISHED_UNHEALTHY}


class StepTiming(BaseModel):
    step: str
    duration_ms: int
    status: str = "ok"  # ok | skipped | warned | failed
    detail: str = ""


class DeployJob(BaseModel):
    """One deploy, from webhook acceptance to publish (or first failing step)."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    trigger_commit_id: str | None = None
    commit_message: str | None = None
    ref: str | None = None
    repository: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    status: JobStatus = JobStatus.QUEUED
    log_lines: list[str] = Field(default_factory=list)
    timings: list[StepTiming] = Field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    artifact: BuildArtifact | None = None
    release: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status in FINAL_STATUSES

    @property
    def duration_ms(self) -> int:
        end = self.finished_at or utcnow()
        return int((end - self.started_at).total_seconds() * 1000)

    def finish(self, status: JobStatus, error: str | None = None, step: str | None = None) -> None:
        self.status = status
        self.finished_at = utcnow()
        if error:
            self.error = error
        if step:
            self.failed_step = step

    def summary(self) -> dict:
        """Compact view for /status (no log lines)."""
        return self.model_dump(
            mode="json",
            include={
                "job_id", "trigger_commit_id", "ref", "started_at",
                "finished_at", "status", "failed_step", "error", "release",
            },
        )
