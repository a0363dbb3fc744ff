from __future__ import annotations

import logging
from typing import List, Optional

from ..api import BINARIES_TAG, PIPELINE_IMAGE_STREAM, REGISTRY_DOMAIN, SOURCE_TAG, ImageBuildConfiguration, JobSpec
from ..cluster import ClusterClient
from ..errors import ConfigurationError, StepValidationError
from ..link import StepLink, internal_image_link
from ..parameters import ParameterMap
from ..results import for_reason
from ..step import RunContext, Step
from .common import build_pod, find_docker_image_reference, pipeline_pull_spec


logger = logging.getLogger(__name__)

BUILDER_IMAGE = f"{REGISTRY_DOMAIN}/ci/image-builder:latest"


def image_parameter(tag: str) -> str:
    """Name of the parameter carrying the pull spec of pipeline tag `tag`."""
    return "IMAGE_" + tag.upper().replace("-", "_").replace(".", "_")


class ImageBuildStep(Step):
    """Build pipeline tag `to` on top of pipeline tag `from_tag`.

    Either builds a Dockerfile (project images) or runs `commands` inside the
    base image and commits the result (binary builds).
    """

    def __init__(
        self,
        config: ImageBuildConfiguration,
        job_spec: JobSpec,
        client: ClusterClient,
        commands: str = "",
        image: str = BUILDER_IMAGE,
    ) -> None:
        self.config = config
        self.job_spec = job_spec
        self.client = client
        self.commands = commands
        self.image = image
        self.name = config.to

    @classmethod
    def binaries(cls, commands: str, job_spec: JobSpec, client: ClusterClient) -> ImageBuildStep:
        config = ImageBuildConfiguration(to=BINARIES_TAG, from_tag=SOURCE_TAG)
        return cls(config, job_spec, client, commands=commands)

    def inputs(self):
        if self.commands:
            return [f"{self.config.from_tag}->{self.config.to}:{self.commands}"]
        return [f"{self.config.from_tag}->{self.config.to}:{self.config.context_dir}/{self.config.dockerfile_path}"]

    def validate(self) -> None:
        if self.config.from_tag == self.config.to:
            raise StepValidationError(self.name, "an image cannot be built from itself")

    def run(self, ctx: RunContext) -> None:
        ns = self.job_spec.namespace
        env = {
            "FROM_IMAGE": pipeline_pull_spec(ns, self.config.from_tag),
            "OUTPUT_IMAGE": pipeline_pull_spec(ns, self.config.to),
        }
        if self.commands:
            env["BUILD_COMMANDS"] = self.commands
        else:
            env["CONTEXT_DIR"] = self.config.context_dir
            env["DOCKERFILE_PATH"] = self.config.dockerfile_path
        logger.info(f"Building {self.config.to} from {self.config.from_tag}")
        pod = build_pod(f"{self.config.to}-build", self.job_spec, self.image, ["/usr/bin/image-builder"], env=env)
        try:
            self.client.run_pod(pod, ctx)
        except Exception as e:  # noqa: BLE001
            raise for_reason("building_image").for_error(e) from e

    def requires(self) -> List[StepLink]:
        return [internal_image_link(self.config.from_tag)]

    def creates(self) -> List[StepLink]:
        return [internal_image_link(self.config.to)]

    def provides(self) -> Optional[ParameterMap]:
        return {image_parameter(self.config.to): self._pull_spec}

    def _pull_spec(self) -> str:
        stream = self.client.get("ImageStream", self.job_spec.namespace, PIPELINE_IMAGE_STREAM)
        ref = find_docker_image_reference(stream, self.config.to)
        if not ref:
            raise ConfigurationError(f"pipeline image stream has no reference for tag {self.config.to!r}")
        return ref

    @property
    def description(self) -> str:
        return f"Build image {self.config.to} from the repository"
