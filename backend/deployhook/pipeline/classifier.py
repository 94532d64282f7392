"""
DeployHook — Push event classification.

Only pushes to the release branch deploy. Everything else is acknowledged
and ignored; receiving irrelevant events is normal, not an error.
"""

from __future__ import annotations

from dataclasses import dataclass

from deployhook.models.webhook import PushEvent
from deployhook.utils.logging import logger

REF_PREFIX = "refs/heads/"


@dataclass(frozen=True)
class Classification:
    should_deploy: bool
    reason: str


def release_ref(branch: str) -> str:
    """`main` → `refs/heads/main`; full refs pass through unchanged."""
    return branch if branch.startswith("refs/") else f"{REF_PREFIX}{branch}"


def classify(event: PushEvent, release_branch: str = "main") -> Classification:
    expected = release_ref(release_branch)

    if not event.ref:
        result = Classification(False, "missing or malformed ref")
    elif event.ref != expected:
        result = Classification(False, f"ref {event.ref} is not {expected}")
    elif event.deleted:
        result = Classification(False, f"{expected} was deleted, nothing to build")
    else:
        result = Classification(True, f"push to {expected}")

    if result.should_deploy:
        logger.info(
            "Deploy accepted: %s @ %s (%s)",
            event.repository_full_name, event.short_commit, result.reason,
        )
    else:
        logger.info("Ignoring push: %s", result.reason)
    return result
