"""DeployHook data models — typed contracts for the entire pipeline."""

from deployhook.models.release import (
    BuildArtifact,
    ReleaseEntry,
    PublishResult,
)
from deployhook.models.job import (
    JobStatus,
    StepTiming,
    DeployJob,
)
from deployhook.models.webhook import (
    PushEvent,
    RepositoryModel,
    CommitModel,
)

__all__ = [
    "BuildArtifact",
    "ReleaseEntry",
    "PublishResult",
    "JobStatus",
    "StepTiming",
    "DeployJob",
    "PushEvent",
    "RepositoryModel",
    "CommitModel",
]
