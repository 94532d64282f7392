"""
DeployHook — Push webhook payload.

Only the fields the pipeline needs are typed; everything else the
repository host sends is tolerated and ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RepositoryModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    full_name: str | None = None
    name: str | None = None


class CommitModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    message: str | None = None


class PushEvent(BaseModel):
    """Inbound push event. Lives for the duration of one request."""

    model_config = ConfigDict(extra="ignore")

    ref: str | None = None
    deleted: bool = False
    repository: RepositoryModel | None = None
    head_commit: CommitModel | None = None
    signature: str | None = Field(default=None, exclude=True)

    @field_validator("ref", mode="before")
    @classmethod
    def _ref_must_be_text(cls, v: Any) -> str | None:
        # A malformed ref is a non-deployable event, not a validation error.
        return v if isinstance(v, str) else None

    @field_validator("repository", "head_commit", mode="before")
    @classmethod
    def _drop_non_objects(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @field_validator("deleted", mode="before")
    @classmethod
    def _deleted_flag(cls, v: Any) -> bool:
        return v is True

    @classmethod
    def from_payload(cls, payload: dict[str, Any], signature: str | None = None) -> "PushEvent":
        return cls.model_validate({**payload, "signature": signature})

    @property
    def repository_full_name(self) -> str | None:
        if not self.repository:
            return None
        return self.repository.full_name or self.repository.name

    @property
    def commit_id(self) -> str | None:
        return self.head_commit.id if self.head_commit else None

    @property
    def commit_message(self) -> str | None:
        return self.head_commit.message if self.head_commit else None

    @property
    def short_commit(self) -> str:
        return (self.commit_id or "unknown")[:7]
