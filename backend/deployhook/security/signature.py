"""
DeployHook — Webhook signature verification.

The repository host signs every delivery with HMAC-SHA256 over the raw
request body and sends it as `X-Hub-Signature-256: sha256=<hex>`.
The body must be the exact bytes received; re-serializing parsed JSON
changes key order and whitespace and breaks the digest.
"""

from __future__ import annotations

import hashlib
import hmac

from deployhook.errors import (
    SecretNotConfiguredError,
    SignatureInvalidError,
    SignatureMissingError,
)
from deployhook.utils.logging import logger

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256)
    return SIGNATURE_PREFIX + mac.hexdigest()


def verify_signature(body: bytes, header: str | None, secret: str) -> bool:
    """Constant-time check of `header` against the body's expected signature."""
    if not header or not secret:
        return False
    if not header.startswith(SIGNATURE_PREFIX):
        logger.warning("Unsupported signature scheme: %s", header.split("=", 1)[0][:16])
        return False
    try:
        provided = header.strip().encode("ascii")
    except UnicodeEncodeError:
        return False
    expected = compute_signature(body, secret).encode("ascii")
    return hmac.compare_digest(expected, provided)


def require_signature(
    body: bytes,
    header: str | None,
    secret: str,
    allow_unsigned: bool = False,
) -> None:
    """
    Raise unless the request is authentic.

    With no secret configured the request is rejected, unless open mode
    was switched on explicitly, in which case it passes with a warning.
    """
    if not secret:
        if allow_unsigned:
            logger.warning(
                "⚠ Accepting webhook WITHOUT signature check (no WEBHOOK_SECRET, open mode)"
            )
            return
        logger.warning("Webhook rejected: WEBHOOK_SECRET is not configured")
        raise SecretNotConfiguredError()

    if not header:
        logger.warning("Webhook rejected: missing %s header", SIGNATURE_HEADER)
        raise SignatureMissingError(SIGNATURE_HEADER)

    if not verify_signature(body, header, secret):
        logger.warning("Webhook rejected: invalid signature")
        raise SignatureInvalidError()
