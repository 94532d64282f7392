"""
DeployHook — Bearer token for the read-only endpoints.

`/logs` exposes build output, which can carry paths and environment
details. With LOGS_TOKEN set, callers must send
`Authorization: Bearer <token>`; without it the endpoint stays open.
"""

from __future__ import annotations

import hmac

from deployhook.errors import LogsTokenError
from deployhook.utils.logging import logger

BEARER_PREFIX = "Bearer "


def require_bearer(header: str | None, token: str) -> None:
    if not token:
        return
    if not header or not header.startswith(BEARER_PREFIX):
        logger.warning("Logs request rejected: missing bearer token")
        raise LogsTokenError()
    provided = header[len(BEARER_PREFIX):].strip()
    if not hmac.compare_digest(provided.encode("utf-8"), token.encode("utf-8")):
        logger.warning("Logs request rejected: wrong bearer token")
        raise LogsTokenError()
