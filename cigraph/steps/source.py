from __future__ import annotations

import logging
from typing import List

from ..api import REGISTRY_DOMAIN, SOURCE_TAG, JobSpec
from ..cluster import ClusterClient
from ..errors import StepValidationError
from ..link import StepLink, internal_image_link
from ..results import for_reason
from ..step import InputDefinition, RunContext, Step
from .common import build_pod, pipeline_pull_spec


logger = logging.getLogger(__name__)

CLONE_IMAGE = f"{REGISTRY_DOMAIN}/ci/source-builder:latest"


class SourceStep(Step):
    """Clone the refs under test and push them as the `src` pipeline image.

    Config:
    - job_spec.refs: required; org/repo/base ref and pull SHAs to merge.
    """

    name = "[src]"

    def __init__(self, job_spec: JobSpec, client: ClusterClient, image: str = CLONE_IMAGE) -> None:
        self.job_spec = job_spec
        self.client = client
        self.image = image

    def inputs(self) -> InputDefinition:
        refs = self.job_spec.refs
        return [refs.describe()] if refs else []

    def validate(self) -> None:
        if self.job_spec.refs is None:
            raise StepValidationError(self.name, "no source refs configured")

    def run(self, ctx: RunContext) -> None:
        refs = self.job_spec.refs
        if refs is None:
            raise StepValidationError(self.name, "no source refs configured")
        env = {
            "CLONE_URL": refs.clone_url(),
            "BASE_REF": refs.base_ref,
            "BASE_SHA": refs.base_sha,
            "PULL_SHAS": ",".join(refs.pulls),
            "OUTPUT_IMAGE": pipeline_pull_spec(self.job_spec.namespace, SOURCE_TAG),
        }
        logger.info(f"Cloning {refs.describe()}")
        pod = build_pod("src-build", self.job_spec, self.image, ["/usr/bin/source-builder"], env=env)
        try:
            self.client.run_pod(pod, ctx)
        except Exception as e:  # noqa: BLE001
            raise for_reason("cloning_source").for_error(e) from e

    def requires(self) -> List[StepLink]:
        return []

    def creates(self) -> List[StepLink]:
        return [internal_image_link(SOURCE_TAG)]

    @property
    def description(self) -> str:
        return "Clone the correct source code into an image and tag it as src"
