"""Shared test configuration and fixtures for DeployHook test suite."""

import asyncio
import sys
from pathlib import Path

import pytest

# Add backend to Python path so imports work
backend_dir = str(Path(__file__).parent.parent / "backend")
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from deployhook.core.config import AppConfig, CommandConfig  # noqa: E402
from deployhook.pipeline.process import CommandResult  # noqa: E402

TEST_SECRET = "test-secret"
BUILD_COMMAND = "npm run build"


class FakeProcessRunner:
    """
    Stands in for SubprocessRunner. Every command succeeds unless told
    otherwise; the build command writes `build_files` files into dist/
    (0 = empty dir, None = no dir at all, like a lying build tool).
    """

    def __init__(self, build_files: int | None = 42):
        self.build_files = build_files
        self.calls: list[list[str]] = []
        self.results: dict[str, CommandResult] = {}
        self.active_builds = 0
        self.max_active_builds = 0
        self.build_started = asyncio.Event()
        self.build_gate: asyncio.Event | None = None
        self.build_delay = 0.0

    def fail(self, command: str, returncode: int = 1, stderr: str = "", stdout: str = "", timed_out: bool = False):
        self.results[command] = CommandResult(
            argv=command.split(),
            returncode=None if timed_out else returncode,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
        )

    def commands(self) -> list[str]:
        return [" ".join(c) for c in self.calls]

    def count(self, command: str) -> int:
        return self.commands().count(command)

    def _write_build(self, cwd: str | None):
        if self.build_files is None:
            return
        dist = Path(cwd) / "dist"
        dist.mkdir(parents=True, exist_ok=True)
        for i in range(self.build_files):
            (dist / f"chunk-{i}.js").write_text(f"console.log({i});\n")

    async def run(self, argv, cwd=None, timeout=None):
        key = " ".join(argv)
        self.calls.append(list(argv))
        if key == BUILD_COMMAND:
            self.active_builds += 1
            self.max_active_builds = max(self.max_active_builds, self.active_builds)
            try:
                self.build_started.set()
                if self.build_gate is not None:
                    await self.build_gate.wait()
                if self.build_delay:
                    await asyncio.sleep(self.build_delay)
                if key not in self.results:
                    self._write_build(cwd)
            finally:
                self.active_builds -= 1
        if key in self.results:
            return self.results[key]
        return CommandResult(argv=list(argv), returncode=0, stdout=f"ok: {key}\n")


@pytest.fixture
def make_runner():
    return FakeProcessRunner


@pytest.fixture
def fake_runner():
    return FakeProcessRunner()


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "site"
    path.mkdir()
    return path


@pytest.fixture
def make_config(project_dir):
    def _make(**overrides) -> AppConfig:
        values = dict(
            secret=TEST_SECRET,
            project_path=str(project_dir),
            pipeline_timeout=30.0,
            step_timeout=30.0,
            commands=CommandConfig(),
        )
        values.update(overrides)
        return AppConfig(**values)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()
