"""
DeployHook — FastAPI webhook server

Endpoints:
  POST /deploy    — signed push webhook → build → atomic publish
  POST /rollback  — signed request → serve the previous release again
  GET  /health    — liveness (uptime, secret configured, project path)
  GET  /logs      — tail of the persisted deploy log
  GET  /status    — deploy lock, last job, current release and history
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from deployhook import __version__
from deployhook.core.config import AppConfig, settings, validate_config
from deployhook.errors import (
    DeployHookError,
    DeployInProgressError,
    InvalidPayloadError,
)
from deployhook.models.job import DeployJob
from deployhook.models.webhook import PushEvent
from deployhook.pipeline.classifier import classify, release_ref
from deployhook.pipeline.deployer import Deployer
from deployhook.pipeline.process import ProcessRunner
from deployhook.pipeline.serializer import SerializerRegistry
from deployhook.security.signature import SIGNATURE_HEADER, require_signature
from deployhook.security.token import require_bearer
from deployhook.utils.logging import configure_logging, logger

IGNORED_MESSAGE = "Branch ignorada"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_payload(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidPayloadError(f"body is not valid JSON ({exc})") from None
    if not isinstance(payload, dict):
        raise InvalidPayloadError("body must be a JSON object")
    return payload


def _failure_response(exc: DeployHookError, job: DeployJob) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "details": exc.to_dict(),
            "status": job.status.value,
            "step": job.failed_step,
            "commit": job.trigger_commit_id,
            "job_id": job.job_id,
            "release": job.release,
            "timestamp": _now(),
        },
    )


# ──────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    cfg: AppConfig = request.app.state.config
    return {
        "status": "ok",
        "timestamp": _now(),
        "project_path": cfg.project_path,
        "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        "secret_configured": cfg.secret_configured,
        "version": __version__,
    }


@router.get("/logs")
async def logs(request: Request, lines: int | None = Query(default=None, ge=1)):
    """Last lines of the deploy log. Empty list before the first deploy."""
    cfg: AppConfig = request.app.state.config
    require_bearer(request.headers.get("Authorization"), cfg.logs_token)
    limit = min(lines or cfg.log_tail_lines, cfg.log_tail_lines)
    deployer: Deployer = request.app.state.deployer
    return {"logs": await asyncio.to_thread(deployer.deploy_log.tail, limit)}


@router.get("/status")
async def status(request: Request):
    deployer: Deployer = request.app.state.deployer
    history = await asyncio.to_thread(deployer.publisher.history)
    current = next((e for e in history if e.current), None)
    return {
        "serializer": deployer.serializer.snapshot().model_dump(mode="json"),
        "last_job": deployer.last_job.summary() if deployer.last_job else None,
        "release_ref": release_ref(deployer.cfg.release_branch),
        "current_release": current.name if current else None,
        "history": [e.model_dump() for e in history],
    }


@router.post("/deploy")
async def deploy(request: Request):
    """
    Verify, classify and deploy a push event.

    The signature is checked against the raw body bytes, before anything
    is parsed. Non-release refs are acknowledged with 200 and ignored.
    """
    cfg: AppConfig = request.app.state.config
    deployer: Deployer = request.app.state.deployer

    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    require_signature(body, signature, cfg.secret, cfg.allow_unsigned)

    event = PushEvent.from_payload(_parse_payload(body), signature)
    logger.info(
        "Webhook received — repo=%s ref=%s commit=%s",
        event.repository_full_name, event.ref, event.short_commit,
    )

    decision = classify(event, cfg.release_branch)
    if not decision.should_deploy:
        return {"message": IGNORED_MESSAGE, "ref": event.ref, "reason": decision.reason}

    job = deployer.new_job(event)
    try:
        await deployer.deploy(event, job)
    except DeployInProgressError:
        raise
    except DeployHookError as exc:
        return _failure_response(exc, job)
    except Exception as exc:
        logger.exception("[%s] Deploy crashed", job.job_id)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Deploy failed",
                "details": str(exc),
                "step": job.failed_step,
                "commit": job.trigger_commit_id,
                "job_id": job.job_id,
                "timestamp": _now(),
            },
        )

    return {
        "success": True,
        "message": "Deploy completed",
        "commit": job.trigger_commit_id,
        "timestamp": _now(),
        "job_id": job.job_id,
        "release": job.release,
        "duration_ms": job.duration_ms,
    }


@router.post("/rollback")
async def rollback(request: Request):
    """Serve the previous retained release again. Signed like /deploy."""
    cfg: AppConfig = request.app.state.config
    deployer: Deployer = request.app.state.deployer

    body = await request.body()
    require_signature(body, request.headers.get(SIGNATURE_HEADER), cfg.secret, cfg.allow_unsigned)

    result = await deployer.rollback()
    return {
        "success": True,
        "release": result.release,
        "previous": result.previous,
        "timestamp": _now(),
    }


# ──────────────────────────────────────────────────────────
# Application factory
# ──────────────────────────────────────────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DeployHookError)
    async def handle_deploy_hook_error(request: Request, exc: DeployHookError):
        level = logging.WARNING if exc.status_code < 500 else logging.ERROR
        logger.log(level, "%s %s → %d %s", request.method, request.url.path, exc.status_code, exc.code)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "details": exc.to_dict(), "timestamp": _now()},
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: AppConfig = app.state.config
    logger.info("")
    logger.info("╔══════════════════════════════════════════════════╗")
    logger.info("║           DeployHook  ·  webhook server          ║")
    logger.info("╠══════════════════════════════════════════════════╣")
    logger.info("║  POST /deploy    → build + publish               ║")
    logger.info("║  POST /rollback  → previous release              ║")
    logger.info("║  GET  /health    → liveness                      ║")
    logger.info("║  GET  /logs      → deploy log tail               ║")
    logger.info("║  GET  /status    → lock, last job, releases      ║")
    logger.info("╠══════════════════════════════════════════════════╣")
    logger.info("║  Project : %-38s║", cfg.project_path)
    logger.info("║  Branch  : %-38s║", release_ref(cfg.release_branch))
    logger.info("║  Secret  : %-38s║", "configured" if cfg.secret_configured else "NOT CONFIGURED")
    logger.info("╚══════════════════════════════════════════════════╝")
    logger.info("")
    yield
    logger.info("DeployHook shutting down")


def create_app(cfg: AppConfig | None = None, process_runner: ProcessRunner | None = None) -> FastAPI:
    cfg = cfg or settings
    configure_logging(cfg.log_level)
    validate_config(cfg)

    app = FastAPI(
        title="DeployHook",
        description="Webhook-triggered build and atomic release publisher for static sites.",
        version=__version__,
        lifespan=lifespan,
    )
    serializer = SerializerRegistry(stale_after=cfg.lock_stale_after).for_project(cfg.project_path)
    app.state.config = cfg
    app.state.deployer = Deployer(cfg, serializer, process_runner)
    app.state.started_at = time.monotonic()

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s %d — %.0f ms (%s)",
            request.method, request.url.path, response.status_code,
            (time.perf_counter() - start) * 1000,
            request.client.host if request.client else "-",
        )
        return response

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()
