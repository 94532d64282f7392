"""
DeployHook — Deploy coordinator.

Owns the DeployJob lifecycle for one project:

  QUEUED → RUNNING → SUCCEEDED
                   → FAILED               (first failing step)
                   → PUBLISHED_UNHEALTHY  (swap done, proxy unhealthy)

The serializer lock is held across the build and the publish and is
always released, whatever the outcome.
"""

from __future__ import annotations

from deployhook.core.config import AppConfig
from deployhook.errors import (
    DeployHookError,
    PublishedUnhealthyError,
)
from deployhook.models.job import DeployJob, JobStatus
from deployhook.models.release import PublishResult
from deployhook.models.webhook import PushEvent
from deployhook.pipeline.process import ProcessRunner, SubprocessRunner
from deployhook.pipeline.publisher import ReleasePublisher
from deployhook.pipeline.runner import BuildPipelineRunner
from deployhook.pipeline.serializer import DeploySerializer
from deployhook.utils.deploy_log import DeployLog
from deployhook.utils.logging import logger


class Deployer:
    def __init__(
        self,
        cfg: AppConfig,
        serializer: DeploySerializer,
        process_runner: ProcessRunner | None = None,
        deploy_log: DeployLog | None = None,
    ):
        self.cfg = cfg
        self.serializer = serializer
        self.process_runner = process_runner or SubprocessRunner()
        self.deploy_log = deploy_log or DeployLog(cfg.deploy_log_path)
        self.runner = BuildPipelineRunner(cfg, self.process_runner, self.deploy_log)
        self.publisher = ReleasePublisher(cfg, self.process_runner, self.deploy_log)
        self.last_job: DeployJob | None = None

    def new_job(self, event: PushEvent) -> DeployJob:
        return DeployJob(
            trigger_commit_id=event.commit_id,
            commit_message=event.commit_message,
            ref=event.ref,
            repository=event.repository_full_name,
        )

    async def deploy(self, event: PushEvent, job: DeployJob | None = None) -> DeployJob:
        """Run one deploy end to end. Raises DeployHookError on any failure."""
        if job is None:
            job = self.new_job(event)

        async with self.serializer.hold(job.job_id):
            self.last_job = job
            job.status = JobStatus.RUNNING
            logger.info("=" * 60)
            logger.info("[%s] Deploy starting — %s @ %s", job.job_id, job.repository, event.short_commit)
            logger.info("=" * 60)
            subject = (job.commit_message or "").split("\n", 1)[0]
            self.deploy_log.info(
                f"[{job.job_id}] deploy started: {job.repository} {job.ref} {event.short_commit} {subject}".rstrip()
            )

            try:
                job.artifact = await self.runner.run(job)
                result = await self.publisher.publish(job.artifact)
            except PublishedUnhealthyError as exc:
                job.release = exc.release
                self._finish(job, JobStatus.PUBLISHED_UNHEALTHY, exc.message, exc.step)
                raise
            except DeployHookError as exc:
                self._finish(job, JobStatus.FAILED, exc.message, getattr(exc, "step", None))
                raise
            except Exception as exc:
                self._finish(job, JobStatus.FAILED, f"unexpected error: {exc}")
                raise

            job.release = result.release
            self._finish(job, JobStatus.SUCCEEDED)
        return job

    async def rollback(self) -> PublishResult:
        async with self.serializer.hold("rollback"):
            return await self.publisher.rollback()

    def _finish(self, job: DeployJob, status: JobStatus, error: str | None = None, step: str | None = None) -> None:
        job.finish(status, error=error, step=step)
        line = f"[{job.job_id}] deploy {status.value} in {job.duration_ms}ms"
        if status is JobStatus.SUCCEEDED:
            line += f" → {job.release}"
            self.deploy_log.info(line)
            logger.info("[%s] Deploy succeeded — %s (%dms)", job.job_id, job.release, job.duration_ms)
        else:
            line += f" at step {step or '?'}: {error}"
            self.deploy_log.error(line)
            logger.error("[%s] Deploy %s at step %s: %s", job.job_id, status.value, step, error)
