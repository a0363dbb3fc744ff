from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List

from ..api import JobSpec, TestConfiguration
from ..cluster import ClusterClient
from ..link import StepLink, internal_image_link
from ..results import for_reason
from ..step import RunContext, Step
from .build import image_parameter
from .common import build_pod, pipeline_pull_spec


logger = logging.getLogger(__name__)


class TestStep(Step):
    """Run a test's commands in a pipeline image.

    Requested parameters (e.g. `IMAGE_FOO` from an image build) are resolved
    at run time and passed to the pod as environment variables. Every
    parameter whose image is among `image_tags` also becomes a requirement on
    that image, so the test never starts before the build providing it.
    """

    __test__ = False  # not a pytest class

    def __init__(
        self,
        config: TestConfiguration,
        job_spec: JobSpec,
        client: ClusterClient,
        image_tags: Iterable[str] = (),
    ) -> None:
        self.config = config
        self.job_spec = job_spec
        self.client = client
        self.name = config.name
        self.parameter_sources: Dict[str, str] = {image_parameter(tag): tag for tag in image_tags}

    def image_tags(self) -> List[str]:
        """Pipeline tags this test consumes: its base image, then parameter images."""
        tags = [self.config.from_tag]
        for name in self.config.parameters:
            tag = self.parameter_sources.get(name)
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    def run(self, ctx: RunContext) -> None:
        try:
            env = ctx.parameters.environment(self.config.parameters)
            pod = build_pod(
                _pod_name(self.config.name),
                self.job_spec,
                pipeline_pull_spec(self.job_spec.namespace, self.config.from_tag),
                ["/bin/bash", "-c"],
                args=[self.config.commands],
                env=env,
            )
            logger.info(f"Executing test {self.config.name}")
            self.client.run_pod(pod, ctx)
        except Exception as e:  # noqa: BLE001
            raise for_reason("executing_test").for_error(e) from e

    def requires(self) -> List[StepLink]:
        return [internal_image_link(tag) for tag in self.image_tags()]

    def creates(self) -> List[StepLink]:
        return []

    @property
    def description(self) -> str:
        return f"Run test {self.config.name}"


def _pod_name(name: str) -> str:
    return re.sub(r"[^a-z0-9-]", "-", name.lower()).strip("-")[:63]
