"""Tests for graph execution"""
import threading
import time

import pytest

from cigraph.executor import Executor, StepState
from cigraph.graph import build_graph
from cigraph.hook import Hook
from cigraph.link import all_steps_link, internal_image_link
from cigraph.results import ReasonedError
from cigraph.step import RunContext

from conftest import RecordingStep


SRC = internal_image_link("src")
IMG = internal_image_link("img")


def run(steps, ctx, parallelism=4, hook=None, implicit=()):
    graph = build_graph(steps, implicit)
    return Executor(graph, ctx, parallelism=parallelism, hook=hook).run()


class TestExecutorHappyPath:
    """Test successful runs"""

    def test_all_steps_succeed(self, ctx):
        steps = [
            RecordingStep("src", creates=[SRC]),
            RecordingStep("img", requires=[SRC], creates=[IMG]),
            RecordingStep("unit", requires=[IMG]),
        ]

        result = run(steps, ctx)

        assert result.succeeded is True
        assert result.reason == ""
        assert all(r.state == StepState.SUCCEEDED for r in result.steps.values())
        assert all(s.calls == 1 for s in steps)

    def test_dependency_order_respected(self, ctx):
        log = []
        steps = [
            RecordingStep("unit", requires=[IMG], log=log),
            RecordingStep("img", requires=[SRC], creates=[IMG], delay=0.02, log=log),
            RecordingStep("src", creates=[SRC], delay=0.02, log=log),
        ]

        run(steps, ctx)

        assert log.index("end:src") < log.index("start:img")
        assert log.index("end:img") < log.index("start:unit")

    def test_independent_steps_run_concurrently(self, ctx):
        barrier = threading.Barrier(2, timeout=5)

        class Rendezvous(RecordingStep):
            def run(self, run_ctx):
                barrier.wait()

        result = run([Rendezvous("a"), Rendezvous("b")], ctx, parallelism=2)

        assert result.succeeded is True

    def test_parallelism_bounds_in_flight_steps(self, ctx):
        lock = threading.Lock()
        current = {"n": 0, "max": 0}

        class Counting(RecordingStep):
            def run(self, run_ctx):
                with lock:
                    current["n"] += 1
                    current["max"] = max(current["max"], current["n"])
                time.sleep(0.02)
                with lock:
                    current["n"] -= 1

        result = run([Counting(f"s{i}") for i in range(6)], ctx, parallelism=2)

        assert result.succeeded is True
        assert current["max"] <= 2

    def test_invalid_parallelism(self, ctx):
        with pytest.raises(ValueError):
            Executor(build_graph([RecordingStep("a")]), ctx, parallelism=0)


class TestExecutorFailures:
    """Test failure handling and skip propagation"""

    def test_failure_skips_dependents_only(self, ctx):
        steps = [
            RecordingStep("src", creates=[SRC]),
            RecordingStep("img", requires=[SRC], creates=[IMG], fail=True),
            RecordingStep("e2e", requires=[IMG]),
            RecordingStep("unit", requires=[SRC]),
            RecordingStep("lint"),
        ]

        result = run(steps, ctx)

        assert result.succeeded is False
        assert result.steps["img"].state == StepState.FAILED
        assert result.steps["e2e"].state == StepState.SKIPPED
        assert result.steps["unit"].state == StepState.SUCCEEDED
        assert result.steps["lint"].state == StepState.SUCCEEDED
        assert steps[2].calls == 0

    def test_skip_propagates_transitively(self, ctx):
        other = internal_image_link("other")
        steps = [
            RecordingStep("src", creates=[SRC], fail=True),
            RecordingStep("img", requires=[SRC], creates=[IMG]),
            RecordingStep("other", requires=[IMG], creates=[other]),
            RecordingStep("last", requires=[other]),
        ]

        result = run(steps, ctx)

        assert result.skipped == ["img", "other", "last"]
        assert result.failed == ["src"]
        assert result.reason == "step_failed"
        assert all(result.steps[n].reason == "dependency_failed" for n in result.skipped)

    def test_failed_step_error_is_reasoned(self, ctx):
        result = run([RecordingStep("broken", fail=True)], ctx)

        step = result.steps["broken"]
        assert isinstance(step.error, ReasonedError)
        assert step.reason == "executing_step"
        assert step.category == "step"
        assert "broken failed" in str(step.error)

    def test_all_steps_requirer_skipped_on_any_failure(self, ctx):
        steps = [
            RecordingStep("src", creates=[SRC]),
            RecordingStep("lint", fail=True),
            RecordingStep("promote", requires=[all_steps_link()]),
        ]

        result = run(steps, ctx)

        assert result.steps["src"].state == StepState.SUCCEEDED
        assert result.steps["promote"].state == StepState.SKIPPED
        assert steps[2].calls == 0

    def test_all_steps_requirer_runs_last(self, ctx):
        log = []
        steps = [
            RecordingStep("promote", requires=[all_steps_link()], log=log),
            RecordingStep("a", delay=0.02, log=log),
            RecordingStep("b", delay=0.01, log=log),
        ]

        result = run(steps, ctx)

        assert result.succeeded is True
        assert log[-2:] == ["start:promote", "end:promote"]

    def test_validation_failure_fails_step_and_skips_dependents(self, ctx):
        steps = [
            RecordingStep("src", creates=[SRC], invalid=True),
            RecordingStep("unit", requires=[SRC]),
            RecordingStep("lint"),
        ]

        result = run(steps, ctx)

        assert result.steps["src"].state == StepState.FAILED
        assert result.steps["src"].reason == "validating_step"
        assert result.steps["src"].category == "step"
        assert result.steps["unit"].state == StepState.SKIPPED
        assert result.steps["lint"].state == StepState.SUCCEEDED
        assert steps[0].calls == 0

    def test_each_step_runs_at_most_once(self, ctx):
        steps = [RecordingStep("src", creates=[SRC])] + [
            RecordingStep(f"t{i}", requires=[SRC], fail=(i % 2 == 0)) for i in range(6)
        ]

        run(steps, ctx, parallelism=3)

        assert all(s.calls == 1 for s in steps)


class TestExecutorParameters:
    """Test parameter visibility between steps"""

    def test_parameters_visible_after_producer_succeeds(self, ctx):
        seen = {}

        class Consumer(RecordingStep):
            def run(self, run_ctx):
                seen["IMAGE"] = run_ctx.parameters.get("IMAGE")

        calls = []

        def resolve():
            calls.append(1)
            return "registry/ns/pipeline@sha256:1"

        steps = [
            RecordingStep("img", creates=[IMG], provides={"IMAGE": resolve}),
            Consumer("a", requires=[IMG]),
            Consumer("b", requires=[IMG]),
        ]

        result = run(steps, ctx)

        assert result.succeeded is True
        assert seen["IMAGE"] == "registry/ns/pipeline@sha256:1"
        assert len(calls) == 1

    def test_parameter_from_failed_producer_is_unavailable(self, ctx):
        steps = [RecordingStep("img", creates=[IMG], provides={"IMAGE": lambda: "x"}, fail=True)]

        run(steps, ctx)

        assert ctx.parameters.has("IMAGE") is False


class TestExecutorCancellation:
    """Test cancellation and deadlines"""

    def test_cancelled_before_start(self, job_spec):
        ctx = RunContext(job_spec)
        ctx.cancel()
        steps = [RecordingStep("a"), RecordingStep("b")]

        result = run(steps, ctx)

        assert result.succeeded is False
        assert result.reason == "cancelled"
        assert all(r.state == StepState.SKIPPED for r in result.steps.values())
        assert all(r.category == "cancelled" for r in result.steps.values())
        assert all(s.calls == 0 for s in steps)

    def test_cancel_during_run_stops_dispatch(self, job_spec):
        ctx = RunContext(job_spec)

        class Canceller(RecordingStep):
            def run(self, run_ctx):
                super().run(run_ctx)
                run_ctx.cancel()

        steps = [
            Canceller("first", creates=[SRC]),
            RecordingStep("second", requires=[SRC]),
        ]

        result = run(steps, ctx, parallelism=1)

        assert result.reason == "cancelled"
        assert result.steps["first"].state == StepState.SUCCEEDED
        assert result.steps["second"].state == StepState.SKIPPED
        assert steps[1].calls == 0

    def test_deadline_cancels_run(self, job_spec):
        ctx = RunContext(job_spec, timeout=0.05)

        class Waiter(RecordingStep):
            def run(self, run_ctx):
                while not run_ctx.wait(0.01):
                    pass
                run_ctx.check()

        steps = [Waiter("slow", creates=[SRC]), RecordingStep("after", requires=[SRC])]

        result = run(steps, ctx)

        assert result.succeeded is False
        assert result.reason == "cancelled"
        assert result.steps["slow"].state == StepState.FAILED
        assert result.steps["slow"].category == "cancelled"
        assert result.steps["after"].state == StepState.SKIPPED


class TestExecutorHooks:
    """Test hook notifications"""

    def test_hook_sees_every_step(self, ctx):
        events = []

        class Collect(Hook):
            def on_pipeline_start(self, graph):
                events.append(("start", len(graph)))

            def on_step_end(self, step, result):
                events.append((step.name, result.state.value))

            def on_pipeline_end(self, result):
                events.append(("end", result.succeeded))

        steps = [RecordingStep("a", creates=[SRC], fail=True), RecordingStep("b", requires=[SRC])]
        run(steps, ctx, hook=Collect())

        assert events[0] == ("start", 2)
        assert ("a", "failed") in events
        assert ("b", "skipped") in events
        assert events[-1] == ("end", False)

    def test_broken_hook_does_not_change_outcome(self, ctx):
        class Broken(Hook):
            def on_step_end(self, step, result):
                raise RuntimeError("sink down")

        result = run([RecordingStep("a")], ctx, hook=Broken())

        assert result.succeeded is True
