"""Image promotion.

Once every other step has succeeded, mirror the run's built images from the
pipeline image stream into the configured external namespace with a single
batched `oc image mirror` pod.
"""
from __future__ import annotations

import logging
import posixpath
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..api import (
    BINARIES_TAG,
    DOCKER_CONFIG_JSON_KEY,
    PIPELINE_IMAGE_STREAM,
    PUSH_SECRET_MOUNT_PATH,
    PUSH_SECRET_NAME,
    REGISTRY_DOMAIN,
    ImageBuildConfiguration,
    ImageStreamTagReference,
    JobSpec,
    PromotionConfiguration,
    ReleaseBuildConfiguration,
    build_cache_for,
)
from ..cluster import ClusterClient
from ..link import StepLink, all_steps_link
from ..results import for_reason
from ..step import RunContext, Step
from .common import find_docker_image_reference


logger = logging.getLogger(__name__)

REASON = "promoting_images"
POD_NAME = "promotion"
MIRROR_IMAGE = f"{REGISTRY_DOMAIN}/ocp/4.8:cli"


def to_promote(
    config: PromotionConfiguration,
    images: Iterable[ImageBuildConfiguration],
    required_images: Set[str],
) -> Tuple[Dict[str, str], Set[str]]:
    """Map destination tag -> pipeline source tag for everything to promote.

    Required or non-optional images are included, exclusions always win over
    that, and additional images override whatever was computed for their
    destination.
    """
    tags_by_dst: Dict[str, str] = {}
    names: Set[str] = set()
    if config.disabled:
        return tags_by_dst, names

    for image in images:
        tag = image.to
        if tag in required_images or not image.optional:
            tags_by_dst[tag] = tag
            names.add(tag)
    for tag in config.excluded_images:
        tags_by_dst.pop(tag, None)
        names.discard(tag)
    for dst, src in config.additional_images.items():
        tags_by_dst[dst] = src
        names.add(dst)
    return tags_by_dst, names


def promoted_tags_with_required_images(
    configuration: Optional[ReleaseBuildConfiguration],
    required_images: Optional[Set[str]] = None,
) -> Tuple[Dict[str, ImageStreamTagReference], Set[str]]:
    """Promoted destinations keyed by their source tag in the pipeline stream."""
    if configuration is None or configuration.promotion is None or configuration.promotion.disabled:
        return {}, set()
    promotion = configuration.promotion
    tags, names = to_promote(promotion, configuration.images, required_images or set())

    promoted: Dict[str, ImageStreamTagReference] = {}
    for dst, src in tags.items():
        if promotion.name:
            ref = ImageStreamTagReference(namespace=promotion.namespace, name=promotion.name, tag=dst)
        else:
            ref = ImageStreamTagReference(namespace=promotion.namespace, name=dst, tag=promotion.tag)
        promoted[src] = ref

    if configuration.binary_build_commands and not promotion.disable_build_cache:
        promoted[BINARIES_TAG] = build_cache_for(configuration.metadata)
    return promoted, names


def promoted_tags(configuration: Optional[ReleaseBuildConfiguration]) -> List[ImageStreamTagReference]:
    mapping, _ = promoted_tags_with_required_images(configuration)
    return sorted(mapping.values(), key=lambda ref: ref.is_tag_name())


def registry_domain(config: PromotionConfiguration) -> str:
    return config.registry_override or REGISTRY_DOMAIN


def get_public_image_reference(reference: str, public_repository: str) -> str:
    """Swap an internal registry host for the stream's externally reachable one."""
    if ":5000" not in reference:
        return reference
    splits = public_repository.split("/")
    if len(splits) < 2:
        logger.warning(f"Failed to get hostname from publicDockerImageRepository: {public_repository}.")
        return reference
    public_host = splits[0]
    splits = reference.split("/")
    if len(splits) < 2:
        logger.warning(f"Failed to get hostname from dockerImageReference: {reference}.")
        return reference
    return reference.replace(splits[0], public_host, 1)


def get_image_mirror_target(
    tags: Mapping[str, ImageStreamTagReference],
    pipeline: Optional[Dict[str, Any]],
    registry: str,
) -> Dict[str, str]:
    """Map pullable source reference -> destination reference.

    Tags without a recorded reference in the stream were not built in this
    run and are skipped.
    """
    if not pipeline:
        return {}
    public_repository = (pipeline.get("status") or {}).get("publicDockerImageRepository", "")
    mirror: Dict[str, str] = {}
    for src, dst in tags.items():
        reference = find_docker_image_reference(pipeline, src)
        if not reference:
            logger.debug(f"No pipeline image stream entry for tag {src}, not promoting it")
            continue
        reference = get_public_image_reference(reference, public_repository)
        mirror[reference] = f"{registry}/{dst.is_tag_name()}"
    return mirror


def mirror_arguments(mirror: Mapping[str, str]) -> List[str]:
    """`src=dst` pairs sorted by source, so identical runs produce identical args."""
    return [f"{src}={mirror[src]}" for src in sorted(mirror)]


def get_promotion_pod(mirror: Mapping[str, str], namespace: str) -> Dict[str, Any]:
    registry_config = posixpath.join(PUSH_SECRET_MOUNT_PATH, DOCKER_CONFIG_JSON_KEY)
    command = (
        f"oc image mirror --registry-config={registry_config} "
        f"--continue-on-error=true --max-per-registry=20 {' '.join(mirror_arguments(mirror))}"
    )
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": POD_NAME, "namespace": namespace},
        "spec": {
            "restartPolicy": "Never",
            "containers": [
                {
                    "name": POD_NAME,
                    "image": MIRROR_IMAGE,
                    "command": ["/bin/sh", "-c"],
                    "args": [command],
                    "volumeMounts": [
                        {"name": "push-secret", "mountPath": PUSH_SECRET_MOUNT_PATH, "readOnly": True},
                    ],
                }
            ],
            "volumes": [
                {"name": "push-secret", "secret": {"secretName": PUSH_SECRET_NAME}},
            ],
        },
    }


class PromotionStep(Step):
    """Copy tags from the pipeline image stream to the promotion destination.

    If a source tag does not exist in the stream it is silently skipped.
    """

    name = "[promotion]"

    def __init__(
        self,
        configuration: ReleaseBuildConfiguration,
        required_images: Optional[Set[str]],
        job_spec: JobSpec,
        client: ClusterClient,
    ) -> None:
        self.configuration = configuration
        self.required_images = set(required_images or ())
        self.job_spec = job_spec
        self.client = client

    def validate(self) -> None:
        promotion = self.configuration.promotion
        if promotion is not None and not promotion.disabled:
            promotion.validate()

    def run(self, ctx: RunContext) -> None:
        try:
            self._run(ctx)
        except Exception as e:  # noqa: BLE001
            raise for_reason(REASON).for_error(e) from e

    def _run(self, ctx: RunContext) -> None:
        promotion = self.configuration.promotion
        if promotion is None or promotion.disabled:
            logger.info("Promotion is not configured, skipping...")
            return
        tags, names = promoted_tags_with_required_images(self.configuration, self.required_images)
        if not names:
            logger.info("Nothing to promote, skipping...")
            return

        logger.info(f"Promoting tags to {promotion.target_name()}: {', '.join(sorted(names))}")
        try:
            pipeline = self.client.get("ImageStream", self.job_spec.namespace, PIPELINE_IMAGE_STREAM, ctx)
        except Exception as e:  # noqa: BLE001
            raise RuntimeError(f"could not resolve pipeline imagestream: {e}") from e

        mirror = get_image_mirror_target(tags, pipeline, registry_domain(promotion))
        if not mirror:
            logger.info("Nothing to promote, skipping...")
            return

        try:
            self.client.run_pod(get_promotion_pod(mirror, self.job_spec.namespace), ctx)
        except Exception as e:  # noqa: BLE001
            raise RuntimeError(f"unable to run promotion pod: {e}") from e

    def requires(self) -> List[StepLink]:
        return [all_steps_link()]

    def creates(self) -> List[StepLink]:
        return []

    @property
    def description(self) -> str:
        target = self.configuration.promotion.target_name() if self.configuration.promotion else ""
        return f"Promote built images into the release image stream {target}"

    def objects(self) -> List[Dict[str, Any]]:
        return self.client.objects()
