"""
DeployHook — Build output and release history models.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class BuildArtifact(BaseModel):
    """A build output directory that passed the existence/non-empty check."""

    path: str
    created_at: datetime
    size_bytes: int
    file_count: int


class ReleaseEntry(BaseModel):
    """A timestamp-suffixed release directory kept for rollback."""

    name: str
    path: str
    timestamp: str
    current: bool = False


class PublishResult(BaseModel):
    release: str
    release_path: str
    previous: str | None = None
    proxy_reloaded: bool = False
    proxy_healthy: bool = False
    pruned: list[str] = Field(default_factory=list)
