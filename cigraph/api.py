"""Release build configuration model and run-wide job context."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .errors import ConfigurationError


PIPELINE_IMAGE_STREAM = "pipeline"
SOURCE_TAG = "src"
BINARIES_TAG = "bin"

REGISTRY_DOMAIN = "registry.ci.openshift.org"
BUILD_CACHE_NAMESPACE = "build-cache"
PUSH_SECRET_NAME = "registry-push-credentials-ci-central"
PUSH_SECRET_MOUNT_PATH = "/etc/push-secret"
DOCKER_CONFIG_JSON_KEY = ".dockerconfigjson"


@dataclass(frozen=True)
class Metadata:
    org: str = ""
    repo: str = ""
    branch: str = ""
    variant: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Metadata:
        data = data or {}
        return cls(
            org=str(data.get("org", "")),
            repo=str(data.get("repo", "")),
            branch=str(data.get("branch", "")),
            variant=str(data.get("variant", "")),
        )


@dataclass(frozen=True, order=True)
class ImageStreamTagReference:
    namespace: str
    name: str
    tag: str

    def is_tag_name(self) -> str:
        """Return the `namespace/name:tag` form."""
        return f"{self.namespace}/{self.name}:{self.tag}"

    def __str__(self) -> str:
        return self.is_tag_name()


def build_cache_for(metadata: Metadata) -> ImageStreamTagReference:
    """Reference under which a repo's binary build is cached for later runs."""
    tag = metadata.branch
    if metadata.variant:
        tag = f"{tag}-{metadata.variant}"
    return ImageStreamTagReference(
        namespace=BUILD_CACHE_NAMESPACE,
        name=f"{metadata.org}-{metadata.repo}",
        tag=tag,
    )


@dataclass(frozen=True)
class ImageBuildConfiguration:
    """One project image: built from `from_tag` into pipeline tag `to`."""

    to: str
    from_tag: str = SOURCE_TAG
    context_dir: str = ""
    dockerfile_path: str = "Dockerfile"
    optional: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ImageBuildConfiguration:
        to = data.get("to")
        if not to:
            raise ConfigurationError("image build configuration requires 'to'")
        return cls(
            to=str(to),
            from_tag=str(data.get("from") or SOURCE_TAG),
            context_dir=str(data.get("context_dir", "")),
            dockerfile_path=str(data.get("dockerfile_path") or "Dockerfile"),
            optional=bool(data.get("optional", False)),
        )


@dataclass(frozen=True)
class TestConfiguration:
    __test__ = False  # not a pytest class

    name: str
    commands: str
    from_tag: str = SOURCE_TAG
    parameters: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TestConfiguration:
        name = data.get("as")
        commands = data.get("commands")
        if not name or not commands:
            raise ConfigurationError("test configuration requires 'as' and 'commands'")
        return cls(
            name=str(name),
            commands=str(commands),
            from_tag=str(data.get("from") or SOURCE_TAG),
            parameters=tuple(data.get("parameters") or ()),
        )


@dataclass(frozen=True)
class PromotionConfiguration:
    """Where and what to promote.

    Exactly one of `name` and `tag` selects the addressing mode: with `name`
    every image lands in one stream and varies by tag, with `tag` every image
    gets its own stream under a shared tag.
    """

    namespace: str
    name: str = ""
    tag: str = ""
    registry_override: str = ""
    excluded_images: Tuple[str, ...] = ()
    additional_images: Dict[str, str] = field(default_factory=dict)
    disabled: bool = False
    disable_build_cache: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PromotionConfiguration:
        additional = data.get("additional_images") or {}
        if not isinstance(additional, dict):
            raise ConfigurationError("promotion.additional_images must be a mapping")
        excluded = data.get("excluded_images") or []
        if not isinstance(excluded, list):
            raise ConfigurationError("promotion.excluded_images must be a list")
        return cls(
            namespace=str(data.get("namespace", "")),
            name=str(data.get("name") or ""),
            tag=str(data.get("tag") or ""),
            registry_override=str(data.get("registry_override") or ""),
            excluded_images=tuple(str(t) for t in excluded),
            additional_images={str(k): str(v) for k, v in additional.items()},
            disabled=bool(data.get("disabled", False)),
            disable_build_cache=bool(data.get("disable_build_cache", False)),
        )

    def validate(self) -> None:
        if not self.namespace:
            raise ConfigurationError("promotion.namespace is required")
        if bool(self.name) == bool(self.tag):
            raise ConfigurationError("promotion requires exactly one of 'name' or 'tag'")

    def target_name(self) -> str:
        if self.name:
            return f"{self.namespace}/{self.name}:${{component}}"
        return f"{self.namespace}/${{component}}:{self.tag}"


@dataclass(frozen=True)
class ReleaseBuildConfiguration:
    metadata: Metadata = field(default_factory=Metadata)
    images: Tuple[ImageBuildConfiguration, ...] = ()
    tests: Tuple[TestConfiguration, ...] = ()
    binary_build_commands: str = ""
    promotion: Optional[PromotionConfiguration] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> ReleaseBuildConfiguration:
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError("release build configuration must be a mapping")
        promotion = data.get("promotion")
        return cls(
            metadata=Metadata.from_dict(data.get("zz_generated_metadata")),
            images=tuple(ImageBuildConfiguration.from_dict(i) for i in data.get("images") or []),
            tests=tuple(TestConfiguration.from_dict(t) for t in data.get("tests") or []),
            binary_build_commands=str(data.get("binary_build_commands") or ""),
            promotion=PromotionConfiguration.from_dict(promotion) if promotion else None,
        )

    @classmethod
    def load(cls, path: Path | str) -> ReleaseBuildConfiguration:
        path = Path(path)
        try:
            with open(path) as f:
                raw = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration from {path}: {e}") from e
        return cls.from_dict(raw)

    def validate(self) -> None:
        seen: set[str] = set()
        for image in self.images:
            if image.to in seen:
                raise ConfigurationError(f"image {image.to!r} is declared more than once")
            if image.to in (SOURCE_TAG, BINARIES_TAG):
                raise ConfigurationError(f"image name {image.to!r} is reserved")
            seen.add(image.to)
        if self.promotion is not None and not self.promotion.disabled:
            self.promotion.validate()


@dataclass(frozen=True)
class Refs:
    """Source revision under test."""

    org: str
    repo: str
    base_ref: str
    base_sha: str = ""
    pulls: Tuple[str, ...] = ()

    def describe(self) -> str:
        desc = f"{self.org}/{self.repo}@{self.base_ref}"
        if self.base_sha:
            desc += f":{self.base_sha}"
        for sha in self.pulls:
            desc += f",{sha}"
        return desc

    @classmethod
    def parse(cls, text: str) -> Refs:
        """Parse `org/repo@base_ref[:base_sha][,pull_sha...]`."""
        head, _, pulls = text.partition(",")
        repo_part, sep, ref_part = head.partition("@")
        org, slash, repo = repo_part.partition("/")
        if not sep or not slash or not org or not repo or not ref_part:
            raise ConfigurationError(f"invalid refs {text!r}, expected org/repo@base_ref[:sha][,pull_sha...]")
        base_ref, _, base_sha = ref_part.partition(":")
        return cls(
            org=org,
            repo=repo,
            base_ref=base_ref,
            base_sha=base_sha,
            pulls=tuple(p for p in pulls.split(",") if p),
        )

    def clone_url(self) -> str:
        return f"https://github.com/{self.org}/{self.repo}.git"


@dataclass(frozen=True)
class JobSpec:
    """Run-wide execution context, read-only once constructed."""

    namespace: str
    job: str = ""
    build_id: str = ""
    refs: Optional[Refs] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def owner_labels(self) -> Dict[str, str]:
        labels = dict(self.labels)
        if self.job:
            labels["ci.openshift.io/job"] = self.job[:63]
        if self.build_id:
            labels["ci.openshift.io/build-id"] = self.build_id[:63]
        return labels
