"""
DeployHook — Structured error catalog.

Every error has a code, human message, suggested fix and the HTTP status
the API answers with. No raw exceptions leak to the webhook sender.
"""

from __future__ import annotations

from typing import Any


class DeployHookError(Exception):
    """
    Base of every error the service answers with.

    Subclasses pin `status_code`. `to_dict()` becomes the `details` object
    of the JSON error body; empty fields are left out.
    """

    status_code = 500

    def __init__(self, code: str, message: str, suggestion: str = "", detail: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.detail = detail

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code}: {self.message})"

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error_code": self.code,
            "status": self.status_code,
            "message": self.message,
        }
        optional = {"suggestion": self.suggestion, "detail": self.detail}
        body.update({k: v for k, v in optional.items() if v not in (None, "", [], {})})
        return body


class ConfigError(DeployHookError):
    def __init__(self, variable: str, message: str):
        self.variable = variable
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Invalid {variable}: {message}",
            suggestion=f"Fix {variable} in the environment or the .env file.",
        )


# ── Authentication ────────────────────────────────────────

class SignatureError(DeployHookError):
    status_code = 401


class SignatureMissingError(SignatureError):
    def __init__(self, header: str):
        super().__init__(
            code="SIGNATURE_MISSING",
            message=f"Missing {header} header",
            suggestion="Configure the webhook with the shared secret so requests are signed.",
        )


class SignatureInvalidError(SignatureError):
    def __init__(self):
        super().__init__(
            code="SIGNATURE_INVALID",
            message="Invalid signature",
            suggestion="Check that the webhook secret matches WEBHOOK_SECRET on the server.",
        )


class SecretNotConfiguredError(SignatureError):
    def __init__(self):
        super().__init__(
            code="SECRET_NOT_CONFIGURED",
            message="Webhook secret is not configured on the server",
            suggestion="Set WEBHOOK_SECRET, or WEBHOOK_ALLOW_UNSIGNED=true for local development.",
        )


class LogsTokenError(SignatureError):
    def __init__(self):
        super().__init__(
            code="LOGS_TOKEN_INVALID",
            message="Missing or invalid bearer token",
            suggestion="Send Authorization: Bearer <LOGS_TOKEN>.",
        )


class InvalidPayloadError(DeployHookError):
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(
            code="INVALID_PAYLOAD",
            message=f"Invalid webhook payload: {reason}",
            suggestion="Send the push event as application/json.",
        )


# ── Concurrency ───────────────────────────────────────────

class DeployInProgressError(DeployHookError):
    status_code = 409

    def __init__(self, holder: str | None, held_seconds: float = 0.0):
        self.holder = holder
        super().__init__(
            code="DEPLOY_IN_PROGRESS",
            message="Deploy already in progress",
            suggestion="Wait for the running deploy to finish, then push again.",
            detail={"running_job": holder, "held_seconds": round(held_seconds, 1)},
        )


# ── Pipeline ──────────────────────────────────────────────

class PipelineError(DeployHookError):
    """Failure of a single pipeline step. Fatal to the current job only."""

    def __init__(self, code: str, step: str, message: str, suggestion: str = "", detail: Any = None):
        self.step = step
        super().__init__(code=code, message=message, suggestion=suggestion, detail=detail)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["step"] = self.step
        return d


class StepFailedError(PipelineError):
    def __init__(self, step: str, returncode: int | None, output: str = ""):
        self.returncode = returncode
        super().__init__(
            code="STEP_FAILED",
            step=step,
            message=f"Step '{step}' failed with exit code {returncode}",
            suggestion="Check GET /logs for the full output of the step.",
            detail=output or None,
        )


class StepTimeoutError(PipelineError):
    def __init__(self, step: str, timeout_s: float, output: str = ""):
        super().__init__(
            code="STEP_TIMEOUT",
            step=step,
            message=f"Step '{step}' timed out after {timeout_s:.0f}s",
            suggestion="Raise PIPELINE_TIMEOUT_SECONDS or speed up the build.",
            detail=output or None,
        )


class EmptyBuildError(PipelineError):
    def __init__(self, path: str, reason: str = "is empty"):
        super().__init__(
            code="EMPTY_BUILD",
            step="verify_output",
            message=f"Build output {path} {reason}",
            suggestion="The build command exited 0 without producing files; check the build configuration.",
        )


# ── Publish ───────────────────────────────────────────────

class PublishError(DeployHookError):
    """Publish failed before ServingRoot was touched."""

    def __init__(self, message: str, detail: Any = None, step: str = "publish"):
        self.step = step
        super().__init__(
            code="PUBLISH_FAILED",
            message=message,
            suggestion="The previous release is still being served. Fix the server and push again.",
            detail=detail,
        )


class PublishedUnhealthyError(DeployHookError):
    """ServingRoot was swapped but the proxy is not healthy afterwards."""

    def __init__(self, release: str, detail: Any = None):
        self.release = release
        self.step = "proxy_check"
        super().__init__(
            code="PUBLISHED_UNHEALTHY",
            message=f"Release {release} was published but the proxy is not healthy",
            suggestion="Operator attention required: inspect the proxy, or POST /rollback.",
            detail=detail,
        )


class NoPreviousReleaseError(DeployHookError):
    def __init__(self):
        super().__init__(
            code="NO_PREVIOUS_RELEASE",
            message="No older release available to roll back to",
            suggestion="Rollback needs at least two retained releases.",
        )
