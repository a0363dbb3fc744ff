"""Graph execution.

One coordinator loop owns every state transition; a bounded worker pool only
invokes `Step.run`. A step is dispatched at most once, and only after all of
its dependencies succeeded. A failure skips the failed step's dependents but
never aborts unrelated branches: the run always drains every reachable step.
"""
from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .graph import StepGraph
from .hook import Hook, notify
from .results import (
    CATEGORY_CANCELLED,
    REASON_CANCELLED,
    REASON_SKIPPED,
    REASON_VALIDATING,
    ReasonedError,
    classify,
    for_reason,
    full_reason,
)
from .step import RunContext, Step


logger = logging.getLogger(__name__)

DEFAULT_PARALLELISM = 4
REASON_STEP = "executing_step"
REASON_RUN_FAILED = "step_failed"


class StepState(str, Enum):
    PENDING = "pending"
    RUNNABLE = "runnable"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StepState.SUCCEEDED, StepState.FAILED, StepState.SKIPPED)


@dataclass
class StepResult:
    name: str
    state: StepState = StepState.PENDING
    reason: str = ""
    category: str = ""
    error: Optional[BaseException] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "reason": self.reason,
            "category": self.category,
            "error": str(self.error) if self.error is not None else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration": self.duration,
        }


@dataclass
class RunResult:
    steps: Dict[str, StepResult] = field(default_factory=dict)
    succeeded: bool = True
    reason: str = ""

    def in_state(self, state: StepState) -> List[str]:
        return [name for name, r in self.steps.items() if r.state == state]

    @property
    def failed(self) -> List[str]:
        return self.in_state(StepState.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self.in_state(StepState.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "succeeded" if self.succeeded else "failed",
            "reason": self.reason,
            "steps": {name: r.to_dict() for name, r in self.steps.items()},
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Executor:
    """Run a StepGraph with at most `parallelism` steps in flight."""

    poll_interval: float = 0.5

    def __init__(self, graph: StepGraph, ctx: RunContext, parallelism: int = DEFAULT_PARALLELISM, hook: Optional[Hook] = None) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self.graph = graph
        self.ctx = ctx
        self.parallelism = parallelism
        self.hook = hook
        self.results: Dict[str, StepResult] = {s.name: StepResult(s.name) for s in graph.steps}
        self._order = graph.topological_order()
        self._dispatched: set[str] = set()

    def run(self) -> RunResult:
        for step in self.graph.steps:
            self.ctx.parameters.declare(step.name, step.provides())

        notify(self.hook, "on_pipeline_start", self.graph)
        self._preflight()

        cancelled = False
        in_flight: Dict[concurrent.futures.Future, Step] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.parallelism, thread_name_prefix="cigraph") as pool:
            while True:
                self._propagate_skips()
                if not cancelled and self.ctx.cancelled:
                    cancelled = True
                    logger.warning("Run cancelled, no further steps will be started")
                    self._skip_pending(REASON_CANCELLED, "pipeline run was cancelled")

                ready = [] if cancelled else self._runnable()
                while ready and len(in_flight) < self.parallelism:
                    step = ready.pop(0)
                    self._start(step)
                    in_flight[pool.submit(step.run, self.ctx)] = step

                if not in_flight:
                    break

                done, _ = concurrent.futures.wait(
                    list(in_flight),
                    timeout=self.poll_interval,
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in done:
                    self._record(in_flight.pop(future), future.exception())

        self._skip_pending(REASON_SKIPPED, "step was never reached")
        result = RunResult(steps=dict(self.results))
        if cancelled:
            result.succeeded, result.reason = False, REASON_CANCELLED
        elif result.failed:
            result.succeeded, result.reason = False, REASON_RUN_FAILED
        logger.info(
            f"Run {'succeeded' if result.succeeded else 'failed'}: "
            f"{len(result.in_state(StepState.SUCCEEDED))} succeeded, {len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        notify(self.hook, "on_pipeline_end", result)
        return result

    def _preflight(self) -> None:
        for step in self._order:
            try:
                step.validate()
            except Exception as e:  # noqa: BLE001
                logger.error(f"Step {step.name} failed validation: {e}")
                self._finish(step, StepState.FAILED, for_reason(REASON_VALIDATING).for_error(e))

    def _runnable(self) -> List[Step]:
        ready: List[Step] = []
        for step in self._order:
            result = self.results[step.name]
            if result.state not in (StepState.PENDING, StepState.RUNNABLE):
                continue
            deps = self.graph.dependencies(step.name)
            if all(self.results[d].state == StepState.SUCCEEDED for d in deps):
                result.state = StepState.RUNNABLE
                ready.append(step)
        return ready

    def _propagate_skips(self) -> None:
        # Topological order lets one pass carry a skip down a whole chain.
        for step in self._order:
            result = self.results[step.name]
            if result.state != StepState.PENDING:
                continue
            blocked = sorted(
                d for d in self.graph.dependencies(step.name)
                if self.results[d].state in (StepState.FAILED, StepState.SKIPPED)
            )
            if blocked:
                error = ReasonedError(REASON_SKIPPED, f"skipped because {', '.join(blocked)} did not succeed")
                logger.info(f"Skipping {step.name}: {error}")
                self._finish(step, StepState.SKIPPED, error)

    def _skip_pending(self, reason: str, message: str) -> None:
        for step in self._order:
            if self.results[step.name].state in (StepState.PENDING, StepState.RUNNABLE):
                self._finish(step, StepState.SKIPPED, ReasonedError(reason, message))

    def _start(self, step: Step) -> None:
        if step.name in self._dispatched:
            raise RuntimeError(f"step {step.name} was dispatched twice")
        self._dispatched.add(step.name)
        result = self.results[step.name]
        result.state = StepState.RUNNING
        result.started_at = _now()
        logger.info(f"Running step {step.name}: {step.description}")
        notify(self.hook, "on_step_start", step)

    def _record(self, step: Step, error: Optional[BaseException]) -> None:
        if error is None:
            self.ctx.parameters.mark_succeeded(step.name)
            self._finish(step, StepState.SUCCEEDED, None)
            return
        if not isinstance(error, ReasonedError):
            error = for_reason(REASON_STEP).for_error(error)
        logger.error(f"Step {step.name} failed: {error}")
        notify(self.hook, "on_error", step.name, error)
        self._finish(step, StepState.FAILED, error)

    def _finish(self, step: Step, state: StepState, error: Optional[BaseException]) -> None:
        result = self.results[step.name]
        result.state = state
        result.finished_at = _now()
        if error is not None:
            result.error = error
            result.reason = full_reason(error)
            if result.reason == REASON_CANCELLED:
                result.category = CATEGORY_CANCELLED
            elif state == StepState.FAILED:
                result.category = classify(error)
        if state == StepState.SUCCEEDED:
            logger.info(f"Step {step.name} succeeded after {result.duration or 0:.1f}s")
        notify(self.hook, "on_step_end", step, result)
