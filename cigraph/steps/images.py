from __future__ import annotations

from typing import Iterable, List

from ..link import StepLink, images_ready_link, internal_image_link
from ..step import RunContext, Step


class ImagesReadyStep(Step):
    """Aggregate step: all project images are built."""

    name = "[images]"

    def __init__(self, tags: Iterable[str]) -> None:
        self.tags = sorted(set(tags))

    def run(self, ctx: RunContext) -> None:
        return None

    def requires(self) -> List[StepLink]:
        return [internal_image_link(tag) for tag in self.tags]

    def creates(self) -> List[StepLink]:
        return [images_ready_link()]

    @property
    def description(self) -> str:
        return "All images are built and tagged into stable"
