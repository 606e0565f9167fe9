from __future__ import annotations

import random

import pytest

from waverun.config.schema import Configuration, ResourceRequirements, Task
from waverun.coordinator import dry_run
from waverun.dag.graph import TaskGraph
from waverun.dag.plan import (
    ExecutionPlanner,
    check_resources,
    critical_path,
    estimated_cost_ms,
    is_io_intensive,
    resource_weight,
    topological_levels,
)
from waverun.util.errors import CircularDependencyError, ResourceError


def _task(name: str, *deps: str, **kwargs: object) -> Task:
    command = f"echo {name}"
    return Task(name=name, command=command, depends_on=deps, **kwargs)  # type: ignore[arg-type]


def test_fan_out_after_compile_runs_in_one_wave() -> None:
    tasks = [
        _task("compile"),
        _task("test", "compile", parallel=True),
        _task("lint", "compile", parallel=True),
    ]
    plan = dry_run(tasks, Configuration(max_parallel=4))
    assert plan.wave_names() == [["compile"], ["test", "lint"]]
    assert plan.waves[0].exclusive is True
    assert plan.waves[1].exclusive is False


def test_exclusive_tasks_get_their_own_wave() -> None:
    tasks = [_task("compile"), _task("test", "compile"), _task("lint", "compile")]
    plan = dry_run(tasks, Configuration(enable_optimizations=False))
    assert plan.wave_names() == [["compile"], ["test"], ["lint"]]
    assert all(wave.exclusive for wave in plan.waves)


def test_parallel_tasks_share_a_wave_at_first_position() -> None:
    tasks = [
        _task("p1", parallel=True),
        _task("solo"),
        _task("p2", parallel=True),
    ]
    plan = dry_run(tasks, Configuration(enable_optimizations=False))
    assert plan.wave_names() == [["p1", "p2"], ["solo"]]
    assert [wave.index for wave in plan.waves] == [0, 1]


def test_optimizations_put_critical_and_heavy_tasks_first() -> None:
    tasks = [
        _task("quick", timeout_ms=1_000, parallel=True),
        _task("slow", timeout_ms=60_000, parallel=True),
        _task(
            "big",
            timeout_ms=1_000,
            parallel=True,
            resource_requirements=ResourceRequirements(memory_mb=2048),
        ),
    ]
    optimized = dry_run(tasks, Configuration())
    assert optimized.wave_names() == [["slow", "big", "quick"]]

    plain = dry_run(tasks, Configuration(enable_optimizations=False))
    assert plain.wave_names() == [["quick", "slow", "big"]]


def test_waves_are_topologically_sound_and_partition_tasks() -> None:
    rng = random.Random(7)
    tasks: list[Task] = []
    for idx in range(40):
        candidates = [task.name for task in tasks]
        deps = rng.sample(candidates, k=min(len(candidates), rng.randint(0, 3)))
        tasks.append(_task(f"t{idx}", *deps, parallel=rng.random() < 0.6))

    plan = dry_run(tasks, Configuration(max_parallel=3))
    position = {name: wave.index for wave in plan.waves for name in wave}
    flat = [name for wave in plan.waves for name in wave]
    assert sorted(flat) == sorted(task.name for task in tasks)
    assert len(flat) == len(set(flat))
    for task in tasks:
        for dep in task.depends_on:
            assert position[dep] < position[task.name]


def test_topological_levels_follow_declaration_order() -> None:
    graph = TaskGraph.from_tasks([_task("b"), _task("a"), _task("c", "a", "b"), _task("d", "b")])
    assert topological_levels(graph) == [["b", "a"], ["c", "d"]]


def test_topological_levels_reject_cycles() -> None:
    graph = TaskGraph.from_tasks([_task("a", "b"), _task("b", "a")])
    with pytest.raises(CircularDependencyError):
        topological_levels(graph)


def test_critical_path_and_estimates() -> None:
    tasks = [
        _task("a", timeout_ms=1_000),
        _task("b", "a", timeout_ms=5_000),
        _task("c", "a", timeout_ms=1_000),
        _task("d", "b", "c", timeout_ms=1_000),
    ]
    cfg = Configuration()
    graph = TaskGraph.from_tasks(tasks)
    assert critical_path(graph, cfg) == ["a", "b", "d"]

    plan = ExecutionPlanner().build(graph, cfg)
    assert plan.critical_path == ["a", "b", "d"]
    assert plan.wave_names() == [["a"], ["b"], ["c"], ["d"]]
    assert plan.estimated_duration_ms == 8_000
    assert plan.peak_memory_mb == 128


def test_cost_scales_with_timeout_multiplier() -> None:
    task = _task("a", "x", timeout_ms=2_000)
    assert estimated_cost_ms(task, Configuration(timeout_multiplier=1.5)) == 3_000
    weight = resource_weight(task, Configuration())
    assert weight == pytest.approx(1.0 + 2_000 / 30_000 + 0.2 + 128 / 1024)


def test_peak_memory_sums_parallel_wave_and_caps_at_limit() -> None:
    tasks = [
        _task("a", parallel=True, resource_requirements=ResourceRequirements(memory_mb=300)),
        _task("b", parallel=True, resource_requirements=ResourceRequirements(memory_mb=400)),
    ]
    assert dry_run(tasks, Configuration()).peak_memory_mb == 700
    assert dry_run(tasks, Configuration(memory_limit=500)).peak_memory_mb == 500


def test_impossible_requirements_raise_resource_error() -> None:
    tasks = [
        _task("huge", resource_requirements=ResourceRequirements(memory_mb=9000)),
        _task("wide", resource_requirements=ResourceRequirements(cpu_cores=8)),
        _task("fine"),
    ]
    graph = TaskGraph.from_tasks(tasks)
    with pytest.raises(ResourceError) as excinfo:
        check_resources(graph, Configuration(max_parallel=4, memory_limit=8192))
    message = str(excinfo.value)
    assert "huge" in message and "wide" in message
    assert "fine" not in message
    with pytest.raises(ResourceError):
        dry_run(tasks, Configuration())


def test_conflicts_are_reported_as_warnings() -> None:
    tasks = [
        _task("a", parallel=True, working_directory="/srv/app", environment={"MODE": "x"}),
        _task("b", parallel=True, working_directory="/srv/app", environment={"MODE": "y"}),
        _task("c", environment={"PATH": "/opt/bin"}),
    ]
    plan = dry_run(tasks, Configuration(enable_optimizations=False))
    assert any("working directory '/srv/app'" in warning for warning in plan.warnings)
    assert any("'MODE' has conflicting values" in warning for warning in plan.warnings)
    assert any("reserved environment variables: ['PATH']" in w for w in plan.warnings)


def test_dry_run_is_idempotent() -> None:
    tasks = [
        _task("compile"),
        _task("test", "compile", parallel=True),
        _task("lint", "compile", parallel=True),
        _task("package", "test", "lint"),
    ]
    cfg = Configuration()
    first = dry_run(tasks, cfg)
    second = dry_run(tasks, cfg)
    assert first == second
    assert first.to_dict()["waves"] == [["compile"], ["test", "lint"], ["package"]]


def test_too_many_io_intensive_parallel_tasks_warn() -> None:
    commands = ["npm install", "docker build .", "git clone repo", "rsync -a src/ dst/", "make"]
    tasks = [
        Task(name=f"io{idx}", command=command, parallel=True)
        for idx, command in enumerate(commands)
    ]
    plan = dry_run(tasks, Configuration(enable_optimizations=False))
    io_warnings = [w for w in plan.warnings if "I/O intensive" in w]
    assert len(io_warnings) == 1
    assert "4 I/O intensive tasks" in io_warnings[0]
    assert "io4" not in io_warnings[0]

    assert is_io_intensive(Task(name="copy", command="cp a b"))
    assert not is_io_intensive(Task(name="echo", command="echo cpu"))
    three = dry_run(tasks[:3], Configuration())
    assert not any("I/O intensive" in w for w in three.warnings)
