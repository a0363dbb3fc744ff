"""Step links: identity tokens that wire steps together.

A link names an artifact (an image tag in the pipeline stream, an external
image, a release payload) without referring to the step that produces it.
Two links are equal iff they denote the same artifact.
"""
from __future__ import annotations

from dataclasses import dataclass


INTERNAL_IMAGE = "internal-image"
EXTERNAL_IMAGE = "external-image"
IMAGES_READY = "images-ready"
RELEASE_PAYLOAD = "release-payload"
ALL_STEPS = "all-steps"


@dataclass(frozen=True, order=True)
class StepLink:
    """An opaque, comparable requirement/provision token."""

    kind: str
    identity: str = ""

    @property
    def is_wildcard(self) -> bool:
        return self.kind == ALL_STEPS

    def __str__(self) -> str:
        if not self.identity:
            return f"<{self.kind}>"
        return f"<{self.kind}:{self.identity}>"


def internal_image_link(tag: str) -> StepLink:
    """Tag `tag` exists in the run's pipeline image stream."""
    return StepLink(INTERNAL_IMAGE, tag)


def external_image_link(namespace: str, name: str, tag: str) -> StepLink:
    """Tag of an image stream outside the run, e.g. a release base image. No built-in step consumes it yet."""
    return StepLink(EXTERNAL_IMAGE, f"{namespace}/{name}:{tag}")


def images_ready_link() -> StepLink:
    return StepLink(IMAGES_READY)


def release_payload_link(name: str) -> StepLink:
    return StepLink(RELEASE_PAYLOAD, name)


_ALL_STEPS = StepLink(ALL_STEPS)


def all_steps_link() -> StepLink:
    """Sentinel satisfied only once every other step in the graph succeeded."""
    return _ALL_STEPS
