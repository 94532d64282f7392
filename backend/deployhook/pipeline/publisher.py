"""
DeployHook — Release publisher.

Owns ServingRoot and the release history. Publishing a validated build:

  1. proxy config test        (failure → nothing touched)
  2. rename build dir → <build>.backup.<timestamp>
  3. retarget ServingRoot     (temp symlink + os.replace, atomic)
  4. graceful proxy reload
  5. proxy liveness check     (failure after 3 → PUBLISHED_UNHEALTHY)
  6. prune history to the retention bound

The publisher never retries. Failures are reported upward.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
from pathlib import Path

from deployhook.core.config import AppConfig
from deployhook.errors import (
    NoPreviousReleaseError,
    PublishError,
    PublishedUnhealthyError,
)
from deployhook.models.release import BuildArtifact, PublishResult, ReleaseEntry
from deployhook.pipeline.process import ProcessRunner
from deployhook.pipeline.runner import excerpt
from deployhook.pipeline.steps import BACKUP_MARKER, release_dir_for
from deployhook.utils.deploy_log import DeployLog
from deployhook.utils.logging import logger, step_timer


class ReleasePublisher:
    def __init__(self, cfg: AppConfig, process_runner: ProcessRunner, deploy_log: DeployLog):
        self.cfg = cfg
        self.process_runner = process_runner
        self.deploy_log = deploy_log
        self.build_path = cfg.build_path
        self.serving_root = cfg.serving_root_path

    # ── ServingRoot / history views ───────────────────────

    def current_target(self) -> Path | None:
        if not self.serving_root.is_symlink():
            return None
        target = Path(os.readlink(self.serving_root))
        if not target.is_absolute():
            target = self.serving_root.parent / target
        return target

    def history(self) -> list[ReleaseEntry]:
        """Release directories, oldest first."""
        prefix = f"{self.build_path.name}{BACKUP_MARKER}"
        parent = self.build_path.parent
        if not parent.is_dir():
            return []
        current = self.current_target()
        current_name = current.name if current is not None else None
        entries = []
        for p in sorted(parent.iterdir(), key=lambda p: p.name):
            if not p.name.startswith(prefix) or not p.is_dir() or p.is_symlink():
                continue
            entries.append(ReleaseEntry(
                name=p.name,
                path=str(p),
                timestamp=p.name[len(prefix):],
                current=p.name == current_name and current.parent.resolve() == parent.resolve(),
            ))
        return entries

    def current_release(self) -> ReleaseEntry | None:
        return next((e for e in self.history() if e.current), None)

    # ── Filesystem operations ─────────────────────────────

    def _swap(self, target: Path) -> Path | None:
        """Point ServingRoot at `target` in one rename. Returns the old target."""
        if self.serving_root.exists() and not self.serving_root.is_symlink():
            raise PublishError(
                f"ServingRoot {self.serving_root} is a real directory, not a symlink",
                detail="Move it aside once and point the proxy at the symlink.",
            )
        previous = self.current_target()
        tmp = self.serving_root.with_name(f".{self.serving_root.name}.{uuid.uuid4().hex[:8]}.tmp")
        os.symlink(target.resolve(), tmp, target_is_directory=True)
        try:
            os.replace(tmp, self.serving_root)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
        logger.info("  ServingRoot %s → %s", self.serving_root, target.name)
        return previous

    def _prune(self) -> list[str]:
        entries = self.history()
        excess = len(entries) - self.cfg.retention
        pruned: list[str] = []
        for entry in entries:
            if excess <= 0:
                break
            if entry.current:
                continue
            try:
                shutil.rmtree(entry.path)
            except OSError as exc:
                logger.warning("  Could not prune %s: %s", entry.name, exc)
                self.deploy_log.warning(f"prune of {entry.name} failed: {exc}")
                continue
            pruned.append(entry.name)
            excess -= 1
        if pruned:
            logger.info("  Pruned %d old release(s): %s", len(pruned), ", ".join(pruned))
        return pruned

    # ── Proxy ─────────────────────────────────────────────

    async def _proxy(self, name: str, argv: list[str]) -> tuple[bool, str]:
        if not argv:
            return True, "skipped"
        result = await self.process_runner.run(argv, cwd=str(self.cfg.project_dir), timeout=self.cfg.step_timeout)
        output = excerpt(result.output, self.cfg.output_excerpt_chars)
        if result.ok:
            self.deploy_log.info(f"{name}: ok")
        else:
            self.deploy_log.error(f"{name} failed (exit {result.returncode}): {output}")
        return result.ok, output

    async def _reload_and_check(self, release: str) -> tuple[bool, bool]:
        reloaded, reload_out = await self._proxy("proxy_reload", self.cfg.commands.proxy_reload)
        healthy, check_out = await self._proxy("proxy_check", self.cfg.commands.proxy_check)
        if not (reloaded and healthy):
            logger.critical("Release %s is live on disk but the proxy is unhealthy", release)
            raise PublishedUnhealthyError(release, detail={
                "proxy_reloaded": reloaded,
                "proxy_healthy": healthy,
                "output": check_out if reloaded else reload_out,
            })
        return reloaded, healthy

    # ── Operations ────────────────────────────────────────

    async def publish(self, artifact: BuildArtifact) -> PublishResult:
        with step_timer("Publish release"):
            ok, output = await self._proxy("proxy_test", self.cfg.commands.proxy_test)
            if not ok:
                raise PublishError("Proxy configuration test failed", detail=output, step="proxy_test")

            source = Path(artifact.path)
            target = release_dir_for(source)
            try:
                os.rename(source, target)
                previous = self._swap(target)
            except OSError as exc:
                raise PublishError(f"Could not publish {source.name}: {exc}") from exc
            self.deploy_log.info(f"published {target.name}")

            reloaded, healthy = await self._reload_and_check(target.name)
            pruned = await asyncio.to_thread(self._prune)

        return PublishResult(
            release=target.name,
            release_path=str(target),
            previous=previous.name if previous is not None else None,
            proxy_reloaded=reloaded,
            proxy_healthy=healthy,
            pruned=pruned,
        )

    async def rollback(self) -> PublishResult:
        """Point ServingRoot at the newest release older than the live one."""
        with step_timer("Rollback release"):
            entries = self.history()
            live = next((i for i, e in enumerate(entries) if e.current), len(entries))
            if live == 0:
                raise NoPreviousReleaseError()
            target = Path(entries[live - 1].path)
            try:
                previous = self._swap(target)
            except OSError as exc:
                raise PublishError(f"Could not roll back to {target.name}: {exc}") from exc
            self.deploy_log.warning(f"rolled back to {target.name}")

            reloaded, healthy = await self._reload_and_check(target.name)

        return PublishResult(
            release=target.name,
            release_path=str(target),
            previous=previous.name if previous is not None else None,
            proxy_reloaded=reloaded,
            proxy_healthy=healthy,
        )
