from __future__ import annotations

import json
import logging
import sys
import urllib.request
from abc import ABC
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .executor import RunResult, StepResult
    from .graph import StepGraph
    from .step import Step


logger = logging.getLogger(__name__)


class Hook(ABC):
    """Base Hook with no-op defaults.

    Hooks observe a pipeline run and forward step outcomes (with their reason
    tags) to an external aggregation sink. The executor calls them through
    `notify`, which logs and suppresses hook errors so a broken sink never
    changes the run outcome.
    """

    def on_pipeline_start(self, graph: "StepGraph") -> None:  # noqa: D401
        return None

    def on_pipeline_end(self, result: "RunResult") -> None:  # noqa: D401
        return None

    def on_step_start(self, step: "Step") -> None:  # noqa: D401
        return None

    def on_step_end(self, step: "Step", result: "StepResult") -> None:  # noqa: D401
        return None

    def on_error(self, scope: str, error: BaseException) -> None:  # noqa: D401
        return None


def notify(hook: Optional[Hook], event: str, *args: Any) -> None:
    if hook is None:
        return
    try:
        getattr(hook, event)(*args)
    except Exception as e:  # noqa: BLE001
        logger.error(f"Hook {type(hook).__name__}.{event} failed: {e}")


class PrintHook(Hook):
    """Simple stdout hook for local visibility."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout

    def on_pipeline_start(self, graph: "StepGraph") -> None:
        print(f"[hook] pipeline_start: steps={len(graph)}", file=self.stream)

    def on_pipeline_end(self, result: "RunResult") -> None:
        status = "succeeded" if result.succeeded else "failed"
        print(f"[hook] pipeline_end: {status} reason={result.reason or '-'}", file=self.stream)

    def on_step_start(self, step: "Step") -> None:
        print(f"[hook] step_start: {step.name}", file=self.stream)

    def on_step_end(self, step: "Step", result: "StepResult") -> None:
        line = f"[hook] step_end: {step.name} -> {result.state.value}"
        if result.reason:
            line += f" ({result.reason})"
        print(line, file=self.stream)

    def on_error(self, scope: str, error: BaseException) -> None:
        print(f"[hook] error in {scope}: {error}", file=sys.stderr)


class HttpHook(Hook):
    """POST step outcomes to a result-aggregation endpoint.

    Body is JSON: {"event": <name>, "payload": {...}}. Step payloads carry
    the reason tag and category so the sink can tell infrastructure failures
    from test failures.
    """

    def __init__(self, base_url: str, headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = 10.0, paths: Optional[Dict[str, str]] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {"Content-Type": "application/json"}
        self.timeout = timeout or 10.0
        self.paths = paths or {}

    def on_pipeline_start(self, graph: "StepGraph") -> None:
        self._post("pipeline_start", {"steps": [s.name for s in graph.steps]})

    def on_pipeline_end(self, result: "RunResult") -> None:
        self._post("pipeline_end", result.to_dict())

    def on_step_end(self, step: "Step", result: "StepResult") -> None:
        self._post("step_end", result.to_dict())

    def on_error(self, scope: str, error: BaseException) -> None:
        self._post("error", {"scope": scope, "error": str(error)})

    def _post(self, event: str, payload: Dict[str, Any]) -> None:
        path = self.paths.get(event, f"/{event}")
        body = json.dumps({"event": event, "payload": payload}).encode("utf-8")
        req = urllib.request.Request(url=self.base_url + path, data=body, headers=self.headers, method="POST")
        with urllib.request.urlopen(req, timeout=self.timeout) as _:
            pass
