"""Terminal rendering of a run's per-step status."""
from __future__ import annotations

from typing import Optional

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .executor import RunResult, StepState
from .graph import StepGraph


STATE_STYLES = {
    StepState.SUCCEEDED: "green",
    StepState.FAILED: "bold red",
    StepState.SKIPPED: "yellow",
    StepState.RUNNING: "cyan",
    StepState.RUNNABLE: "cyan",
    StepState.PENDING: "dim",
}


def build_table(result: RunResult, graph: Optional[StepGraph] = None) -> Table:
    title = "Pipeline succeeded" if result.succeeded else f"Pipeline failed ({result.reason})"
    table = Table(title=title, box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("Step")
    table.add_column("State")
    table.add_column("Reason")
    table.add_column("Category")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", overflow="fold")

    names = [s.name for s in graph.topological_order()] if graph is not None else list(result.steps)
    for name in names:
        r = result.steps[name]
        duration = f"{r.duration:.1f}s" if r.duration is not None else "-"
        table.add_row(
            name,
            Text(r.state.value, style=STATE_STYLES[r.state]),
            r.reason or "-",
            r.category or "-",
            duration,
            str(r.error) if r.error is not None else "",
        )
    return table


def render(result: RunResult, graph: Optional[StepGraph] = None, console: Optional[Console] = None) -> None:
    (console or Console()).print(build_table(result, graph))
