from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .api import JobSpec
from .executor import DEFAULT_PARALLELISM, Executor, RunResult
from .graph import StepGraph, build_graph
from .hook import Hook
from .step import RunContext, Step


logger = logging.getLogger(__name__)


class Pipeline:
    """Compose requested steps into a graph and execute it.

    Implicit steps are only pulled in when a requested step needs something
    they create.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        job_spec: JobSpec,
        implicit: Optional[Sequence[Step]] = None,
        hook: Optional[Hook] = None,
        parallelism: int = DEFAULT_PARALLELISM,
        timeout: Optional[float] = None,
    ) -> None:
        self.steps: List[Step] = list(steps)
        self.implicit: List[Step] = list(implicit or [])
        self.job_spec = job_spec
        self.hook = hook
        self.parallelism = parallelism
        self.timeout = timeout
        self._graph: Optional[StepGraph] = None
        self.context: Optional[RunContext] = None

    def build(self) -> StepGraph:
        """Resolve the graph. Raises ConfigurationError subclasses, never runs anything."""
        if self._graph is None:
            self._graph = build_graph(self.steps, self.implicit)
            logger.debug(f"Resolved graph with {len(self._graph)} steps and {len(self._graph.edges)} edges")
        return self._graph

    def execute(self, ctx: Optional[RunContext] = None) -> RunResult:
        graph = self.build()
        self.context = ctx or RunContext(self.job_spec, timeout=self.timeout)
        logger.info(f"Executing {len(graph)} steps in namespace {self.job_spec.namespace} (inputs {graph.input_digest()[:12]})")
        executor = Executor(graph, self.context, parallelism=self.parallelism, hook=self.hook)
        return executor.run()

    def cancel(self) -> None:
        if self.context is not None:
            self.context.cancel()
