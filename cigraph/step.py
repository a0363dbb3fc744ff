from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from .api import JobSpec
from .errors import CancelledError
from .link import StepLink
from .parameters import ParameterMap, Parameters


InputDefinition = List[str]


class RunContext:
    """Per-run state shared read-only by all steps.

    Owned by the executor for the lifetime of one pipeline run: the job spec,
    the parameter registry, and the run's single cancellation signal.
    """

    def __init__(
        self,
        job_spec: JobSpec,
        parameters: Optional[Parameters] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.job_spec = job_spec
        self.parameters = parameters or Parameters()
        self._cancel = threading.Event()
        self.deadline: Optional[float] = time.monotonic() + timeout if timeout else None

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        if self._cancel.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; return True if the run got cancelled meanwhile."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._cancel.wait(seconds)
        return self.cancelled

    def check(self) -> None:
        if self.cancelled:
            raise CancelledError("pipeline run was cancelled")


class Step(ABC):
    """A unit of pipeline work.

    Steps never reference each other: they declare the links they need
    (`requires`) and the links they satisfy (`creates`), and the graph builder
    wires them. A step is immutable once constructed; `run` touches only
    external systems and is invoked at most once per graph execution.
    """

    name: str = ""

    def inputs(self) -> InputDefinition:
        """External inputs this step depends on, used for cache keys."""
        return []

    def validate(self) -> None:
        """Pre-flight check of the step's own configuration. Must not touch the cluster."""
        return None

    @abstractmethod
    def run(self, ctx: RunContext) -> None:
        """Perform the side effect. Raise on failure."""

    @abstractmethod
    def requires(self) -> List[StepLink]:
        """Links that must exist before this step runs."""

    @abstractmethod
    def creates(self) -> List[StepLink]:
        """Links this step makes available to others."""

    def provides(self) -> Optional[ParameterMap]:
        return None

    @property
    def description(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
