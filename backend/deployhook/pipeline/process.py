"""
DeployHook — External process execution.

Pipeline and publisher steps shell out through a ProcessRunner so the
event loop keeps serving /health and /logs while a build runs, and so
tests can swap in a fake runner without git, npm or nginx installed.
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from typing import Protocol

from deployhook.utils.logging import logger

# Exit status the shell uses for "command not found".
NOT_FOUND_RETURNCODE = 127


@dataclass
class CommandResult:
    argv: list[str]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class ProcessRunner(Protocol):
    async def run(self, argv: list[str], cwd: str | None = None, timeout: float | None = None) -> CommandResult:
        ...


class SubprocessRunner:
    """
    Runs commands with asyncio subprocesses, each in its own session.

    On timeout the whole process group is killed, so grandchildren such as
    the node process behind `npm run build` die with it and release the
    output pipes.
    """

    def __init__(self, env: dict[str, str] | None = None):
        self.env = env

    async def run(self, argv: list[str], cwd: str | None = None, timeout: float | None = None) -> CommandResult:
        start = time.perf_counter()
        logger.info("  $ %s", " ".join(argv))

        env = {**os.environ, **self.env} if self.env else None
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            return CommandResult(
                argv=argv,
                returncode=NOT_FOUND_RETURNCODE,
                stderr=f"command not found: {exc.filename or argv[0]}",
                duration_ms=int((time.perf_counter() - start) * 1000),
            )

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            return CommandResult(
                argv=argv,
                returncode=None,
                stderr=f"timed out after {timeout:.0f}s",
                duration_ms=int((time.perf_counter() - start) * 1000),
                timed_out=True,
            )
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        return CommandResult(
            argv=argv,
            returncode=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        """Kill the child's whole process group, then reap the child."""
        logger.warning("  Killing process group %s", proc.pid)
        try:
            # start_new_session made the child a group leader: pgid == pid.
            # Grandchildren may outlive a shell that already exited.
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await proc.wait()
