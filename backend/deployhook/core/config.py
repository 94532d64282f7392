"""
DeployHook — Backend Configuration
Loads .env automatically, then reads all settings from environment variables.
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from deployhook.errors import ConfigError
from deployhook.utils.logging import logger

_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class CommandConfig:
    """External commands run by the pipeline and the publisher (argv lists)."""
    stop: list[str] = field(default_factory=list)
    install: list[str] = field(default_factory=lambda: ["npm", "ci"])
    build: list[str] = field(default_factory=lambda: ["npm", "run", "build"])
    proxy_test: list[str] = field(default_factory=lambda: ["nginx", "-t"])
    proxy_reload: list[str] = field(
        default_factory=lambda: ["systemctl", "reload", "nginx"]
    )
    proxy_check: list[str] = field(
        default_factory=lambda: ["systemctl", "is-active", "--quiet", "nginx"]
    )


@dataclass(frozen=True)
class AppConfig:
    """Top-level application configuration."""
    host: str = "0.0.0.0"
    port: int = 3001
    secret: str = ""
    allow_unsigned: bool = False
    project_path: str = "/var/www/triagem"
    release_branch: str = "main"
    git_remote: str = "origin"
    build_dir: str = "dist"
    serving_root: str = "current"
    retention: int = 3
    pipeline_timeout: float = 300.0
    step_timeout: float = 300.0
    lock_stale_after: float = 600.0
    deploy_log_file: str = "deploy.log"
    log_tail_lines: int = 50
    logs_token: str = ""
    output_excerpt_chars: int = 1000
    log_level: str = "INFO"
    commands: CommandConfig = field(default_factory=CommandConfig)

    @property
    def secret_configured(self) -> bool:
        return bool(self.secret)

    @property
    def project_dir(self) -> Path:
        return Path(self.project_path)

    @property
    def build_path(self) -> Path:
        return self.project_dir / self.build_dir

    @property
    def serving_root_path(self) -> Path:
        # Absolute values win over the project-relative join.
        return self.project_dir / self.serving_root

    @property
    def deploy_log_path(self) -> Path:
        return self.project_dir / self.deploy_log_file


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(name, f"expected an integer, got {raw!r}") from None


def _float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(name, f"expected a number, got {raw!r}") from None


def _bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in (
        "1", "true", "yes", "on",
    )


def _command(name: str, default: str) -> list[str]:
    return shlex.split(os.getenv(name, default))


def _load_config() -> AppConfig:
    return AppConfig(
        host=os.getenv("WEBHOOK_HOST", "0.0.0.0"),
        port=_int("WEBHOOK_PORT", 3001),
        secret=os.getenv("WEBHOOK_SECRET", ""),
        allow_unsigned=_bool("WEBHOOK_ALLOW_UNSIGNED"),
        project_path=os.getenv("PROJECT_PATH", "/var/www/triagem"),
        release_branch=os.getenv("RELEASE_BRANCH", "main"),
        git_remote=os.getenv("GIT_REMOTE", "origin"),
        build_dir=os.getenv("BUILD_DIR", "dist"),
        serving_root=os.getenv("SERVING_ROOT", "current"),
        retention=_int("RETENTION_COUNT", 3),
        pipeline_timeout=_float("PIPELINE_TIMEOUT_SECONDS", 300.0),
        step_timeout=_float("STEP_TIMEOUT_SECONDS", 300.0),
        lock_stale_after=_float("LOCK_STALE_SECONDS", 600.0),
        deploy_log_file=os.getenv("DEPLOY_LOG_FILE", "deploy.log"),
        log_tail_lines=_int("LOG_TAIL_LINES", 50),
        logs_token=os.getenv("LOGS_TOKEN", ""),
        output_excerpt_chars=_int("OUTPUT_EXCERPT_CHARS", 1000),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        commands=CommandConfig(
            stop=_command("STOP_COMMAND", ""),
            install=_command("INSTALL_COMMAND", "npm ci"),
            build=_command("BUILD_COMMAND", "npm run build"),
            proxy_test=_command("PROXY_TEST_COMMAND", "nginx -t"),
            proxy_reload=_command("PROXY_RELOAD_COMMAND", "systemctl reload nginx"),
            proxy_check=_command(
                "PROXY_CHECK_COMMAND", "systemctl is-active --quiet nginx"
            ),
        ),
    )


def validate_config(cfg: AppConfig) -> None:
    """Fail fast on settings the pipeline cannot work with; shout about a missing secret."""
    if cfg.retention < 1:
        raise ConfigError("RETENTION_COUNT", "must keep at least one release")
    if cfg.pipeline_timeout <= 0 or cfg.step_timeout <= 0:
        raise ConfigError("PIPELINE_TIMEOUT_SECONDS", "timeouts must be positive")
    if cfg.log_tail_lines < 1:
        raise ConfigError("LOG_TAIL_LINES", "must be at least 1")
    if cfg.serving_root_path.resolve() == cfg.build_path.resolve():
        raise ConfigError(
            "SERVING_ROOT", "serving root and build output dir must differ"
        )

    if not cfg.secret_configured:
        if cfg.allow_unsigned:
            logger.warning(
                "WEBHOOK_SECRET is not set and WEBHOOK_ALLOW_UNSIGNED=true: "
                "unsigned webhooks WILL trigger deploys. Never run this in production."
            )
        else:
            logger.error(
                "WEBHOOK_SECRET is not set: every /deploy request will be rejected. "
                "Set it with: export WEBHOOK_SECRET=<your-secret>"
            )


settings = _load_config()
