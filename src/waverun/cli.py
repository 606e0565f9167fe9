from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from waverun.config.loader import Pipeline, load_pipeline
from waverun.config.presets import production_ready
from waverun.coordinator import ExecutionCoordinator, dry_run
from waverun.dag.plan import ExecutionPlan
from waverun.state.model import RunResult
from waverun.util.errors import ConfigError, DependencyError, ResourceError
from waverun.util.log import configure_logging

app = typer.Typer(help="Dependency-aware parallel task pipeline runner")
console = Console()

_STATUS_STYLE = {
    "SUCCESS": "green",
    "FAILED": "red",
    "TIMED_OUT": "red",
    "SKIPPED": "yellow",
}


def _exit_code_for_result(result: RunResult) -> int:
    if result.status == "ABORTED":
        return 4
    if result.failed or result.timed_out:
        return 3
    return 0


def _load_or_exit(
    pipeline_path: Path, *, max_parallel: int | None = None, quality_threshold: int | None = None
) -> Pipeline:
    try:
        pipeline = load_pipeline(pipeline_path)
        overrides: dict[str, int] = {}
        if max_parallel is not None:
            overrides["max_parallel"] = max_parallel
        if quality_threshold is not None:
            overrides["quality_threshold"] = quality_threshold
        if overrides:
            pipeline = replace(
                pipeline, configuration=replace(pipeline.configuration, **overrides)
            )
    except ConfigError as exc:
        console.print(f"[red]Pipeline error:[/red] {exc}")
        raise typer.Exit(2) from exc
    return pipeline


def _render_plan(plan: ExecutionPlan, pipeline: Pipeline) -> None:
    table = Table(title="Execution Plan")
    table.add_column("wave")
    table.add_column("tasks")
    table.add_column("mode")
    for wave in plan.waves:
        mode = "exclusive" if wave.exclusive else "parallel"
        table.add_row(str(wave.index), ", ".join(wave.task_names), mode)
    console.print(table)
    described = [task for task in pipeline.tasks if task.description]
    if described:
        details = Table(title="Tasks")
        details.add_column("task")
        details.add_column("description")
        for task in described:
            details.add_row(task.name, task.description)
        console.print(details)
    if pipeline.configuration.name:
        console.print(f"profile: {pipeline.configuration.name}")
    console.print(f"critical path: [bold]{' -> '.join(plan.critical_path)}[/bold]")
    console.print(f"estimated duration: {plan.estimated_duration_ms / 1000:.1f}s")
    console.print(f"peak memory: {plan.peak_memory_mb}MB")
    ready = "yes" if production_ready(pipeline.configuration) else "no"
    console.print(f"production ready: {ready}")
    for warning in plan.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def _render_result(result: RunResult) -> None:
    table = Table(title="Run Summary")
    table.add_column("task")
    table.add_column("wave")
    table.add_column("status")
    table.add_column("attempts")
    table.add_column("duration_sec")
    table.add_column("exit_code")
    table.add_column("note")
    for name, task_result in result.results.items():
        style = _STATUS_STYLE.get(task_result.status, "white")
        wave = "-" if task_result.wave_index is None else str(task_result.wave_index)
        exit_code = "-" if task_result.exit_code is None else str(task_result.exit_code)
        table.add_row(
            name,
            wave,
            f"[{style}]{task_result.status}[/{style}]",
            str(task_result.attempts),
            f"{task_result.duration_sec:.3f}",
            exit_code,
            task_result.skip_reason or "",
        )
    console.print(table)
    console.print(f"state: [bold]{result.status}[/bold]")
    console.print(f"quality score: {result.quality_score:.2f}")
    if result.abort_reason:
        console.print(f"[red]abort reason:[/red] {result.abort_reason}")
    for recommendation in result.recommendations:
        console.print(f"recommendation: {recommendation}")


@app.command()
def run(
    pipeline_path: Annotated[Path, typer.Argument(exists=True)],
    max_parallel: Annotated[int | None, typer.Option("--max-parallel", min=1, max=32)] = None,
    quality_threshold: Annotated[
        int | None, typer.Option("--quality-threshold", min=0, max=100)
    ] = None,
    as_json: Annotated[bool, typer.Option("--json")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
) -> None:
    configure_logging(verbose=verbose, quiet=as_json)
    pipeline = _load_or_exit(
        pipeline_path, max_parallel=max_parallel, quality_threshold=quality_threshold
    )
    coordinator = ExecutionCoordinator()
    try:
        result = asyncio.run(coordinator.execute(pipeline.tasks, pipeline.configuration))
    except (DependencyError, ResourceError) as exc:
        console.print(f"[red]Pipeline validation error:[/red] {exc}")
        raise typer.Exit(2) from exc

    if as_json:
        typer.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        _render_result(result)
    raise typer.Exit(_exit_code_for_result(result))


@app.command()
def plan(
    pipeline_path: Annotated[Path, typer.Argument(exists=True)],
    as_json: Annotated[bool, typer.Option("--json")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
) -> None:
    configure_logging(verbose=verbose, quiet=True)
    pipeline = _load_or_exit(pipeline_path)
    try:
        execution_plan = dry_run(pipeline.tasks, pipeline.configuration)
    except (DependencyError, ResourceError) as exc:
        console.print(f"[red]Pipeline validation error:[/red] {exc}")
        raise typer.Exit(2) from exc

    if as_json:
        payload = execution_plan.to_dict()
        payload["production_ready"] = production_ready(pipeline.configuration)
        payload["profile"] = pipeline.configuration.name
        payload["descriptions"] = {
            task.name: task.description for task in pipeline.tasks if task.description
        }
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        raise typer.Exit(0)
    _render_plan(execution_plan, pipeline)
    raise typer.Exit(0)


if __name__ == "__main__":
    app()
