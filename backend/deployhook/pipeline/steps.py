"""
DeployHook — Pipeline step definitions.

A deploy is a fixed, ordered list of typed steps interpreted by
BuildPipelineRunner. Command steps run an external process; action steps
run a Python callable against the project directory.

  stop → snapshot → fetch → reset → install → build → verify_output
"""

from __future__ import annotations

import enum
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from deployhook.core.config import AppConfig
from deployhook.errors import EmptyBuildError
from deployhook.models.release import BuildArtifact
from deployhook.utils.logging import logger

BACKUP_MARKER = ".backup."
FAILED_MARKER = ".failed."
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"


class OnFailure(str, enum.Enum):
    ABORT = "abort"
    WARN = "warn"


@dataclass(frozen=True)
class Step:
    name: str
    command: list[str] | None = None
    action: Callable[[], object] | None = None
    timeout: float = 300.0
    on_failure: OnFailure = OnFailure.ABORT

    @property
    def is_noop(self) -> bool:
        return not self.command and self.action is None


def _stamped_sibling(build_path: Path, marker: str, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now(timezone.utc)).strftime(TIMESTAMP_FORMAT)
    candidate = build_path.with_name(f"{build_path.name}{marker}{stamp}")
    n = 1
    while candidate.exists() or candidate.is_symlink():
        candidate = build_path.with_name(f"{build_path.name}{marker}{stamp}_{n}")
        n += 1
    return candidate


def release_dir_for(build_path: Path, now: datetime | None = None) -> Path:
    """Fresh `<build>.backup.<timestamp>` sibling of the build dir."""
    return _stamped_sibling(build_path, BACKUP_MARKER, now)


def failed_dir_for(build_path: Path, now: datetime | None = None) -> Path:
    """Fresh `<build>.failed.<timestamp>` sibling, outside release history."""
    return _stamped_sibling(build_path, FAILED_MARKER, now)


def snapshot_build_dir(build_path: Path) -> str:
    """
    Set aside whatever an interrupted or failed build left in the build dir.

    Published releases already live in history under `.backup.`, so a
    leftover here never passed verification. It is renamed to
    `<build>.failed.<timestamp>` for inspection; only the newest such
    leftover is kept.
    """
    if build_path.is_symlink():
        build_path.unlink()
        return f"removed stray symlink {build_path.name}"
    if not build_path.exists():
        return "nothing to snapshot"
    if build_path.is_dir() and not any(build_path.iterdir()):
        build_path.rmdir()
        return f"removed empty {build_path.name}"

    for old in build_path.parent.glob(f"{build_path.name}{FAILED_MARKER}*"):
        if old.is_dir() and not old.is_symlink():
            shutil.rmtree(old)
        else:
            old.unlink()
    target = failed_dir_for(build_path)
    os.rename(build_path, target)
    logger.warning("  Leftover build output %s set aside as %s", build_path.name, target.name)
    return f"{build_path.name} → {target.name}"


def inspect_build_output(build_path: Path) -> BuildArtifact:
    """Post-build check: the output dir must exist and hold at least one file."""
    if not build_path.is_dir() or build_path.is_symlink():
        raise EmptyBuildError(str(build_path), "does not exist")

    size = 0
    files = 0
    for root, _dirs, names in os.walk(build_path):
        for name in names:
            p = Path(root) / name
            try:
                size += p.lstat().st_size
            except OSError:
                continue
            files += 1

    if files == 0:
        raise EmptyBuildError(str(build_path))

    return BuildArtifact(
        path=str(build_path),
        created_at=datetime.now(timezone.utc),
        size_bytes=size,
        file_count=files,
    )


def build_steps(cfg: AppConfig) -> list[Step]:
    build_path = cfg.build_path
    cmds = cfg.commands
    remote, branch = cfg.git_remote, cfg.release_branch
    return [
        Step("stop", command=list(cmds.stop), timeout=cfg.step_timeout, on_failure=OnFailure.WARN),
        Step("snapshot", action=lambda: snapshot_build_dir(build_path), timeout=cfg.step_timeout),
        Step("fetch", command=["git", "fetch", remote, branch], timeout=cfg.step_timeout),
        Step("reset", command=["git", "reset", "--hard", f"{remote}/{branch}"], timeout=cfg.step_timeout),
        Step("install", command=list(cmds.install), timeout=cfg.step_timeout),
        Step("build", command=list(cmds.build), timeout=cfg.step_timeout),
        Step("verify_output", action=lambda: inspect_build_output(build_path), timeout=cfg.step_timeout),
    ]

