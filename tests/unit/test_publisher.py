"""Unit tests for the release publisher: atomic swap, proxy checks, retention, rollback."""

import os
from pathlib import Path

import pytest

from deployhook.core.config import CommandConfig
from deployhook.errors import (
    NoPreviousReleaseError,
    PublishError,
    PublishedUnhealthyError,
)
from deployhook.pipeline.publisher import ReleasePublisher
from deployhook.pipeline.steps import inspect_build_output
from deployhook.utils.deploy_log import DeployLog


@pytest.fixture
def deploy_log(config):
    log = DeployLog(config.deploy_log_path)
    yield log
    log.close()


@pytest.fixture
def publisher(config, fake_runner, deploy_log):
    return ReleasePublisher(config, fake_runner, deploy_log)


def make_build(cfg, files=3, marker="new"):
    cfg.build_path.mkdir()
    for i in range(files):
        (cfg.build_path / f"{marker}-{i}.js").write_text(marker)
    return inspect_build_output(cfg.build_path)


def make_release(cfg, stamp):
    p = cfg.project_dir / f"{cfg.build_dir}.backup.{stamp}"
    p.mkdir()
    (p / "index.html").write_text(stamp)
    return p


@pytest.mark.asyncio
class TestPublish:
    async def test_first_publish_creates_serving_root(self, config, publisher, fake_runner):
        result = await publisher.publish(make_build(config))

        root = config.serving_root_path
        assert root.is_symlink()
        assert Path(os.readlink(root)).name == result.release
        assert (root / "new-0.js").read_text() == "new"
        assert not config.build_path.exists()
        assert result.previous is None
        assert result.proxy_reloaded and result.proxy_healthy
        assert fake_runner.commands() == [
            "nginx -t",
            "systemctl reload nginx",
            "systemctl is-active --quiet nginx",
        ]

    async def test_second_publish_retargets(self, config, publisher):
        first = await publisher.publish(make_build(config, marker="v1"))
        second = await publisher.publish(make_build(config, marker="v2"))

        assert second.previous == first.release
        assert (config.serving_root_path / "v2-0.js").exists()
        assert Path(first.release_path).is_dir()
        assert [e.name for e in publisher.history()] == [first.release, second.release]
        assert publisher.current_release().name == second.release

    async def test_no_temp_symlinks_left_behind(self, config, publisher):
        await publisher.publish(make_build(config))
        leftovers = [p for p in config.project_dir.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    async def test_proxy_config_failure_touches_nothing(self, config, publisher, fake_runner):
        old = make_release(config, "20250101_000000_000000")
        os.symlink(old, config.serving_root_path)
        fake_runner.fail("nginx -t", stderr="nginx: [emerg] unknown directive")

        with pytest.raises(PublishError) as exc:
            await publisher.publish(make_build(config))

        assert exc.value.step == "proxy_test"
        assert Path(os.readlink(config.serving_root_path)) == old
        assert config.build_path.is_dir()
        assert fake_runner.count("systemctl reload nginx") == 0

    async def test_real_directory_serving_root_refused(self, config, publisher):
        config.serving_root_path.mkdir()
        with pytest.raises(PublishError):
            await publisher.publish(make_build(config))
        assert not config.serving_root_path.is_symlink()

    async def test_reload_failure_is_published_unhealthy(self, config, publisher, fake_runner):
        fake_runner.fail("systemctl reload nginx", stderr="Job for nginx.service failed")
        with pytest.raises(PublishedUnhealthyError) as exc:
            await publisher.publish(make_build(config))
        # the swap already happened
        assert config.serving_root_path.is_symlink()
        assert exc.value.release == Path(os.readlink(config.serving_root_path)).name
        assert exc.value.detail["proxy_reloaded"] is False

    async def test_dead_proxy_is_published_unhealthy(self, config, publisher, fake_runner):
        fake_runner.fail("systemctl is-active --quiet nginx", returncode=3)
        with pytest.raises(PublishedUnhealthyError) as exc:
            await publisher.publish(make_build(config))
        assert exc.value.code == "PUBLISHED_UNHEALTHY"
        assert exc.value.detail["proxy_healthy"] is False

    async def test_unhealthy_publish_skips_pruning(self, make_config, fake_runner, deploy_log):
        cfg = make_config(retention=1)
        pub = ReleasePublisher(cfg, fake_runner, deploy_log)
        await pub.publish(make_build(cfg, marker="v1"))
        fake_runner.fail("systemctl is-active --quiet nginx", returncode=3)
        with pytest.raises(PublishedUnhealthyError):
            await pub.publish(make_build(cfg, marker="v2"))
        assert len(pub.history()) == 2

    async def test_proxy_commands_optional(self, make_config, fake_runner, deploy_log):
        cfg = make_config(commands=CommandConfig(proxy_test=[], proxy_reload=[], proxy_check=[]))
        pub = ReleasePublisher(cfg, fake_runner, deploy_log)
        result = await pub.publish(make_build(cfg))
        assert result.proxy_healthy
        assert fake_runner.calls == []


@pytest.mark.asyncio
class TestRetention:
    async def test_history_never_exceeds_bound(self, make_config, fake_runner, deploy_log):
        cfg = make_config(retention=3)
        pub = ReleasePublisher(cfg, fake_runner, deploy_log)
        releases = []
        for n in range(6):
            result = await pub.publish(make_build(cfg, marker=f"v{n}"))
            releases.append(result.release)
            assert len(pub.history()) <= 3

        assert [e.name for e in pub.history()] == releases[-3:]
        assert pub.current_release().name == releases[-1]

    async def test_oldest_pruned_first(self, make_config, fake_runner, deploy_log):
        cfg = make_config(retention=2)
        old = make_release(cfg, "20240101_000000_000000")
        older = make_release(cfg, "20230101_000000_000000")
        pub = ReleasePublisher(cfg, fake_runner, deploy_log)

        result = await pub.publish(make_build(cfg))

        assert set(result.pruned) == {older.name}
        assert old.exists()
        assert not older.exists()

    async def test_prune_failure_does_not_fail_publish(self, make_config, fake_runner, deploy_log, monkeypatch):
        cfg = make_config(retention=1)
        stuck = make_release(cfg, "20240101_000000_000000")
        pub = ReleasePublisher(cfg, fake_runner, deploy_log)

        def refuse(path, *args, **kwargs):
            raise PermissionError(13, "Permission denied", str(path))

        monkeypatch.setattr("deployhook.pipeline.publisher.shutil.rmtree", refuse)
        result = await pub.publish(make_build(cfg))

        assert result.proxy_healthy
        assert result.pruned == []
        assert stuck.exists()
        assert pub.current_release().name == result.release
        assert any("prune of" in line for line in deploy_log.tail(20))

    async def test_live_release_never_pruned(self, make_config, fake_runner, deploy_log):
        cfg = make_config(retention=1)
        pub = ReleasePublisher(cfg, fake_runner, deploy_log)
        # a newer-named stray dir must not evict the one being served
        result = await pub.publish(make_build(cfg))
        make_release(cfg, "99990101_000000_000000")
        pub._prune()
        assert Path(result.release_path).exists()


class TestHistory:
    def test_empty(self, publisher):
        assert publisher.history() == []
        assert publisher.current_release() is None

    def test_ignores_unrelated_entries(self, config, publisher):
        make_release(config, "20250101_000000_000000")
        (config.project_dir / "dist.backup.file").write_text("not a dir")
        (config.project_dir / "node_modules").mkdir()
        assert [e.timestamp for e in publisher.history()] == ["20250101_000000_000000"]

    def test_marks_current(self, config, publisher):
        a = make_release(config, "20250101_000000_000000")
        make_release(config, "20250102_000000_000000")
        os.symlink(a, config.serving_root_path)
        current = publisher.current_release()
        assert current.name == a.name


@pytest.mark.asyncio
class TestRollback:
    async def test_rolls_back_to_previous(self, config, publisher, fake_runner):
        first = await publisher.publish(make_build(config, marker="v1"))
        second = await publisher.publish(make_build(config, marker="v2"))

        result = await publisher.rollback()

        assert result.release == first.release
        assert result.previous == second.release
        assert (config.serving_root_path / "v1-0.js").exists()
        assert fake_runner.count("systemctl reload nginx") == 3

    async def test_nothing_to_roll_back_to(self, config, publisher):
        await publisher.publish(make_build(config))
        with pytest.raises(NoPreviousReleaseError):
            await publisher.rollback()

    async def test_empty_history(self, publisher):
        with pytest.raises(NoPreviousReleaseError):
            await publisher.rollback()
