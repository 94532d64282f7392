"""
DeployHook — Build pipeline runner.

Interprets the ordered step list for one DeployJob. Each step is timed,
logged and recorded on the job; the first failing step aborts the rest.
A global deadline bounds the whole pipeline: each step gets whatever is
left of it, capped by its own timeout.

Nothing here touches ServingRoot. The only product of a successful run
is the BuildArtifact returned by the verify_output step.
"""

from __future__ import annotations

import asyncio
import time

from deployhook.core.config import AppConfig
from deployhook.errors import PipelineError, StepFailedError, StepTimeoutError
from deployhook.models.job import DeployJob, StepTiming
from deployhook.models.release import BuildArtifact
from deployhook.pipeline.process import CommandResult, ProcessRunner
from deployhook.pipeline.steps import OnFailure, Step, build_steps
from deployhook.utils.deploy_log import DeployLog
from deployhook.utils.logging import logger


def excerpt(text: str, limit: int) -> str:
    """Tail of `text` in at most `limit` characters, ellipsis included; errors live at the end."""
    text = text.strip()
    if len(text) <= limit:
        return text
    if limit <= 1:
        return "…" if limit == 1 else ""
    return "…" + text[-(limit - 1):]


class BuildPipelineRunner:
    def __init__(
        self,
        cfg: AppConfig,
        process_runner: ProcessRunner,
        deploy_log: DeployLog,
        steps: list[Step] | None = None,
    ):
        self.cfg = cfg
        self.process_runner = process_runner
        self.deploy_log = deploy_log
        self.steps = steps if steps is not None else build_steps(cfg)

    def _record_step(self, job: DeployJob, name: str, start: float, status: str = "ok", detail: str = ""):
        ms = int((time.perf_counter() - start) * 1000)
        job.timings.append(StepTiming(step=name, duration_ms=ms, status=status, detail=detail))
        symbol = {"ok": "✓", "skipped": "⊘", "warned": "!"}.get(status, "✗")
        logger.info("  %s %s — %dms %s", symbol, name, ms, detail)
        self._log(job, f"{symbol} {name} ({ms}ms) {detail}".rstrip())

    def _log(self, job: DeployJob, line: str) -> None:
        job.log_lines.append(line)
        self.deploy_log.info(f"[{job.job_id}] {line}")

    def _capture(self, job: DeployJob, step: str, result: CommandResult) -> None:
        for stream in (result.stdout, result.stderr):
            for line in stream.splitlines():
                if line.strip():
                    self._log(job, f"[{step}] {line}")

    async def run(self, job: DeployJob) -> BuildArtifact:
        deadline = time.monotonic() + self.cfg.pipeline_timeout
        artifact: BuildArtifact | None = None

        for step in self.steps:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._record_step(job, step.name, time.perf_counter(), "failed", "pipeline deadline reached")
                raise StepTimeoutError(step.name, self.cfg.pipeline_timeout)

            result = await self._run_step(job, step, min(step.timeout, remaining))
            if isinstance(result, BuildArtifact):
                artifact = result

        if artifact is None:
            raise StepFailedError("verify_output", None, "pipeline produced no build artifact")
        return artifact

    async def _run_step(self, job: DeployJob, step: Step, timeout: float):
        t = time.perf_counter()
        if step.is_noop:
            self._record_step(job, step.name, t, "skipped", "not configured")
            return None

        if step.action is not None:
            return await self._run_action(job, step, timeout, t)

        self._log(job, f"$ {' '.join(step.command)}")
        result = await self.process_runner.run(step.command, cwd=str(self.cfg.project_dir), timeout=timeout)
        self._capture(job, step.name, result)

        if result.ok:
            self._record_step(job, step.name, t)
            return result

        output = excerpt(result.output, self.cfg.output_excerpt_chars)
        if step.on_failure is OnFailure.WARN:
            self._record_step(job, step.name, t, "warned", f"exit {result.returncode}, continuing")
            self.deploy_log.warning(f"[{job.job_id}] {step.name} failed, continuing: {output}")
            return result

        if result.timed_out:
            self._record_step(job, step.name, t, "failed", f"timed out after {timeout:.0f}s")
            raise StepTimeoutError(step.name, timeout, output)
        self._record_step(job, step.name, t, "failed", f"exit {result.returncode}")
        raise StepFailedError(step.name, result.returncode, output)

    async def _run_action(self, job: DeployJob, step: Step, timeout: float, t: float):
        try:
            value = await asyncio.wait_for(asyncio.to_thread(step.action), timeout=timeout)
        except asyncio.TimeoutError:
            self._record_step(job, step.name, t, "failed", f"timed out after {timeout:.0f}s")
            raise StepTimeoutError(step.name, timeout) from None
        except PipelineError as exc:
            self._record_step(job, step.name, t, "failed", exc.message)
            raise
        except OSError as exc:
            self._record_step(job, step.name, t, "failed", str(exc))
            raise StepFailedError(step.name, None, excerpt(str(exc), self.cfg.output_excerpt_chars)) from exc

        detail = ""
        if isinstance(value, BuildArtifact):
            detail = f"{value.file_count} files, {value.size_bytes} bytes"
        elif isinstance(value, str):
            detail = value
        self._record_step(job, step.name, t, detail=detail)
        return value
