"""Revision registry: materializes new immutable service revisions."""

from __future__ import annotations

import asyncio

import structlog

from bluegreen.domain.errors import ConfigurationError, ControlPlaneError
from bluegreen.domain.models.base import utc_now
from bluegreen.domain.models.deployment import DeploymentAttempt
from bluegreen.domain.models.service import RevisionRef
from bluegreen.domain.ports.services import ControlPlaneClient


logger = structlog.get_logger(__name__)


def image_tag(image: str) -> str | None:
    """Return the tag of an image reference, or ``None`` when untagged.

    Digest references (``repo@sha256:...``) are returned as the digest.
    """
    if "@" in image:
        return image.split("@", 1)[1]
    name = image.rsplit("/", 1)[-1]
    if ":" not in name:
        return None
    return name.rsplit(":", 1)[1]


def validate_image(image: str | None, mutable_tags: list[str]) -> str:
    """Reject images that do not pin an immutable version."""
    if not image or not image.strip():
        raise ConfigurationError("Image must be set")
    tag = image_tag(image.strip())
    if not tag:
        raise ConfigurationError(f"Image {image} has no tag; a specific version is required")
    if tag.lower() in {t.lower() for t in mutable_tags}:
        raise ConfigurationError(
            f"Image tag '{tag}' is mutable; deploy a specific version instead"
        )
    return tag


class RevisionRegistry:
    """Creates a new revision from the current one plus an image override."""

    def __init__(self, control_plane: ControlPlaneClient, timeout_seconds: float = 60.0) -> None:
        self._control_plane = control_plane
        self._timeout_seconds = timeout_seconds

    async def register(self, attempt: DeploymentAttempt) -> RevisionRef:
        """Register the target revision of ``attempt`` and attach it."""
        if attempt.previous_revision_ref is None:
            raise ConfigurationError("Current revision must be captured before registering")
        if not attempt.image:
            raise ConfigurationError("No image to register")

        metadata = {
            "DEPLOYMENT_ID": attempt.deployment_id,
            "DEPLOYMENT_TIME": utc_now().isoformat(),
        }
        try:
            revision_ref = await asyncio.wait_for(
                self._control_plane.register_revision(
                    attempt.previous_revision_ref, attempt.image, metadata
                ),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ControlPlaneError(
                f"Revision registration timed out after {self._timeout_seconds}s",
                operation="register_revision",
            ) from e

        attempt.set_target(revision_ref)
        logger.info(
            "revision_registered",
            deployment_id=attempt.deployment_id,
            base_revision=str(attempt.previous_revision_ref),
            revision=str(revision_ref),
            image=attempt.image,
        )
        return revision_ref
