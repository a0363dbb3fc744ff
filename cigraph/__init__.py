"""
cigraph: a dependency-resolved CI step graph executor.

This package provides core primitives:
- StepLink: identity tokens wiring step requirements to producers.
- Step: Base class for executable steps; source, build, test and promotion steps provided.
- build_graph: Resolve requested steps plus implicit producers into an acyclic graph.
- Executor: Run a graph with bounded concurrency, skip propagation and cancellation.
- Pipeline: Compose graph building and execution for one run.
- ClusterClient: Object reads and short-lived pods against the cluster.
"""

from .api import (
    ImageBuildConfiguration,
    ImageStreamTagReference,
    JobSpec,
    Metadata,
    PromotionConfiguration,
    Refs,
    ReleaseBuildConfiguration,
    TestConfiguration,
)
from .cluster import ClusterClient, ClusterError, KubeClusterClient, PodFailedError
from .errors import (
    ConfigurationError,
    CyclicDependencyError,
    DuplicateProviderError,
    StepValidationError,
    UnsatisfiableDependencyError,
)
from .executor import Executor, RunResult, StepResult, StepState
from .graph import StepGraph, build_graph
from .hook import Hook, HttpHook, PrintHook
from .link import StepLink, all_steps_link, images_ready_link, internal_image_link
from .parameters import Parameters
from .pipeline import Pipeline
from .results import ReasonedError, for_reason, full_reason, reason_for
from .step import RunContext, Step
from .steps import ImageBuildStep, ImagesReadyStep, PromotionStep, SourceStep, TestStep

__all__ = [
    # Configuration model
    "ImageBuildConfiguration",
    "ImageStreamTagReference",
    "JobSpec",
    "Metadata",
    "PromotionConfiguration",
    "Refs",
    "ReleaseBuildConfiguration",
    "TestConfiguration",
    # Links & steps
    "StepLink",
    "all_steps_link",
    "images_ready_link",
    "internal_image_link",
    "Step",
    "RunContext",
    "Parameters",
    "SourceStep",
    "ImageBuildStep",
    "ImagesReadyStep",
    "TestStep",
    "PromotionStep",
    # Graph & execution
    "StepGraph",
    "build_graph",
    "Executor",
    "RunResult",
    "StepResult",
    "StepState",
    "Pipeline",
    # Cluster
    "ClusterClient",
    "ClusterError",
    "KubeClusterClient",
    "PodFailedError",
    # Errors & results
    "ConfigurationError",
    "CyclicDependencyError",
    "DuplicateProviderError",
    "StepValidationError",
    "UnsatisfiableDependencyError",
    "ReasonedError",
    "for_reason",
    "full_reason",
    "reason_for",
    # Hooks
    "Hook",
    "PrintHook",
    "HttpHook",
]
