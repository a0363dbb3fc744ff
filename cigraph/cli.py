from __future__ import annotations

import json
import logging
import os
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from .api import JobSpec, Refs, ReleaseBuildConfiguration
from .cluster import KubeClusterClient, OfflineClusterClient
from .config import Config
from .defaults import from_config
from .errors import ConfigurationError
from .hook import HttpHook
from .pipeline import Pipeline
from .report import render
from .steps import promoted_tags


EXIT_FAILED = 1
EXIT_CONFIG = 2

app = typer.Typer(name="cigraph", help="cigraph CLI: resolve and run CI step graphs.", no_args_is_help=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False, console=Console(stderr=True))],
        force=True,
    )


def _load(config_path: Path) -> ReleaseBuildConfiguration:
    configuration = ReleaseBuildConfiguration.load(config_path)
    configuration.validate()
    return configuration


@app.command("promoted-tags")
def promoted_tags_command(
    config_path: Path = typer.Argument(..., help="Release build configuration (YAML)"),
    as_json: bool = typer.Option(False, "--json", help="Print a JSON list"),
):
    """Print the image references a promotion of CONFIG would produce."""
    try:
        tags = [t.is_tag_name() for t in promoted_tags(_load(config_path))]
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG)
    if as_json:
        typer.echo(json.dumps(tags, indent=2))
    else:
        for tag in tags:
            typer.echo(tag)


@app.command("graph")
def graph_command(
    config_path: Path = typer.Argument(..., help="Release build configuration (YAML)"),
    target: Optional[List[str]] = typer.Option(None, "--target", "-t", help="Step to request (repeatable)"),
    promote: bool = typer.Option(False, "--promote", help="Include the promotion step"),
):
    """Resolve the step graph without touching a cluster."""
    try:
        configuration = _load(config_path)
        job_spec = JobSpec(namespace="dry-run")
        requested, implicit = from_config(configuration, job_spec, OfflineClusterClient(), target, promote)
        graph = Pipeline(requested, job_spec, implicit=implicit).build()
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG)
    for step in graph.topological_order():
        deps = sorted(graph.dependencies(step.name))
        suffix = f" <- {', '.join(deps)}" if deps else ""
        typer.echo(f"{step.name}{suffix}")


@app.command("run")
def run_command(
    config_path: Path = typer.Argument(..., help="Release build configuration (YAML)"),
    namespace: str = typer.Option(..., "--namespace", "-n", help="Namespace the run executes in"),
    target: Optional[List[str]] = typer.Option(None, "--target", "-t", help="Step to request (repeatable)"),
    refs: Optional[str] = typer.Option(None, "--refs", help="org/repo@base_ref[:sha][,pull_sha...]"),
    promote: bool = typer.Option(False, "--promote", help="Promote images after everything succeeded"),
    parallelism: Optional[int] = typer.Option(None, "--parallelism", "-j", help="Max concurrently running steps"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Deadline for the whole run, in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Execute the step graph against the configured cluster."""
    _setup_logging(verbose)
    settings = Config.load_with_repo_context()
    if not settings.cluster_url:
        typer.echo("Error: no cluster_url configured. Set it with 'cigraph config cluster_url <url>'", err=True)
        raise typer.Exit(EXIT_CONFIG)

    try:
        configuration = _load(config_path)
        job_spec = JobSpec(
            namespace=namespace,
            job=os.environ.get("JOB_NAME", ""),
            build_id=os.environ.get("BUILD_ID", ""),
            refs=Refs.parse(refs) if refs else None,
        )
        client = KubeClusterClient(settings.cluster_url, token=settings.token(), verify=settings.verify_tls)
        requested, implicit = from_config(configuration, job_spec, client, target, promote)
        hook = HttpHook(settings.report_url) if settings.report_url else None
        pipeline = Pipeline(
            requested,
            job_spec,
            implicit=implicit,
            hook=hook,
            parallelism=parallelism or settings.parallelism,
            timeout=timeout or settings.timeout,
        )
        graph = pipeline.build()
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_CONFIG)

    def _cancel(signum, frame):  # noqa: ARG001
        logging.getLogger(__name__).warning(f"Received signal {signum}, cancelling run")
        pipeline.cancel()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)

    result = pipeline.execute()
    render(result, graph)
    raise typer.Exit(0 if result.succeeded else EXIT_FAILED)


@app.command("config")
def config_command(
    key: str = typer.Argument(..., help="Configuration key"),
    value: Optional[str] = typer.Argument(None, help="Value to set (omit to get current value)"),
):
    """Get or set a setting in the repo (or global) config."""
    settings = Config.load_with_repo_context()
    if value is None:
        current = settings.get(key)
        if current is None:
            typer.echo(f"{key} is not set", err=True)
            raise typer.Exit(1)
        typer.echo(str(current))
        return
    settings.set(key, value)
    settings.save()
    typer.echo(f"Set {key} in {settings.config_path}")


def main(argv: list[str] | None = None) -> int:
    try:
        # With standalone_mode=False click returns the exit code instead of raising.
        code = app(args=argv, prog_name="cigraph", standalone_mode=False)
        return int(code or 0)
    except typer.Exit as e:
        return int(e.exit_code or 0)
    except SystemExit as e:
        return int(e.code or 0)
    except Exception as e:  # noqa: BLE001
        if str(e):
            typer.echo(f"Unexpected error: {e}", err=True)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
