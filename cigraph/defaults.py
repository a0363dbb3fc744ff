"""Turn a release build configuration into requested and implicit steps."""
from __future__ import annotations

from typing import Iterable, List, Optional, Set, Tuple

from .api import JobSpec, ReleaseBuildConfiguration
from .cluster import ClusterClient
from .errors import ConfigurationError
from .step import Step
from .steps import ImageBuildStep, ImagesReadyStep, PromotionStep, SourceStep, TestStep, image_parameter


def from_config(
    configuration: ReleaseBuildConfiguration,
    job_spec: JobSpec,
    client: ClusterClient,
    targets: Optional[Iterable[str]] = None,
    promote: bool = False,
) -> Tuple[List[Step], List[Step]]:
    """Return (requested, implicit) steps for a run.

    Without targets every configured step is requested. With targets, only the
    named steps are requested and the rest become implicit candidates that the
    graph builder adds when a requested step needs them.
    """
    configuration.validate()

    steps: List[Step] = [SourceStep(job_spec, client)]
    if configuration.binary_build_commands:
        steps.append(ImageBuildStep.binaries(configuration.binary_build_commands, job_spec, client))
    images = [ImageBuildStep(image, job_spec, client) for image in configuration.images]
    steps.extend(images)
    if images:
        steps.append(ImagesReadyStep(image.config.to for image in images))

    builds = [s for s in steps if isinstance(s, ImageBuildStep)]
    provided = {image_parameter(s.config.to) for s in builds}
    tags = [s.config.to for s in builds]
    for test in configuration.tests:
        unknown = sorted(set(test.parameters) - provided)
        if unknown:
            raise ConfigurationError(f"test {test.name!r} requests parameters no image provides: {', '.join(unknown)}")
        steps.append(TestStep(test, job_spec, client, image_tags=tags))

    wanted = list(targets or [])
    if not wanted:
        requested, implicit = steps, []
    else:
        by_name = {s.name: s for s in steps}
        unknown = sorted(set(wanted) - set(by_name))
        if unknown:
            raise ConfigurationError(f"unknown targets: {', '.join(unknown)}")
        requested = [s for s in steps if s.name in wanted]
        implicit = [s for s in steps if s.name not in wanted]

    if promote and configuration.promotion is not None and not configuration.promotion.disabled:
        requested = requested + [PromotionStep(configuration, required_images(requested), job_spec, client)]
    return requested, implicit


def required_images(requested: Iterable[Step]) -> Set[str]:
    """Image tags the requested steps explicitly ask for."""
    required: Set[str] = set()
    for step in requested:
        if isinstance(step, ImageBuildStep):
            required.add(step.config.to)
        elif isinstance(step, TestStep):
            required.update(step.image_tags())
    return required
