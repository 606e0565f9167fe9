"""Wave planning over a validated task graph."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass, field

from waverun.config.schema import DEFAULT_TIMEOUT_MS, Configuration, Task
from waverun.dag.graph import TaskGraph
from waverun.dag.validate import find_cycle
from waverun.util.errors import CircularDependencyError, ResourceError

logger = logging.getLogger(__name__)

RESERVED_ENV_VARS = ("PATH", "HOME", "USER", "PWD")
MAX_PARALLEL_IO_TASKS = 3
IO_INTENSIVE_PATTERNS = tuple(
    re.compile(pattern)
    for pattern in (
        r"mix\s+compile",
        r"mix\s+deps",
        r"npm\s+install",
        r"docker\s+build",
        r"git\s+clone",
        r"\bcp\s+",
        r"rsync\s+",
    )
)


@dataclass(frozen=True, slots=True)
class ExecutionWave:
    index: int
    task_names: tuple[str, ...]
    exclusive: bool = False

    def __len__(self) -> int:
        return len(self.task_names)

    def __iter__(self) -> Iterator[str]:
        return iter(self.task_names)


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    waves: list[ExecutionWave]
    critical_path: list[str]
    estimated_duration_ms: int
    peak_memory_mb: int
    warnings: list[str] = field(default_factory=list)

    def wave_names(self) -> list[list[str]]:
        return [list(wave.task_names) for wave in self.waves]

    def to_dict(self) -> dict[str, object]:
        return {
            "waves": self.wave_names(),
            "critical_path": self.critical_path,
            "estimated_duration_ms": self.estimated_duration_ms,
            "peak_memory_mb": self.peak_memory_mb,
            "warnings": self.warnings,
        }


def task_memory_mb(task: Task, configuration: Configuration) -> int:
    reqs = task.resource_requirements
    if reqs is not None and reqs.memory_mb is not None:
        return reqs.memory_mb
    return configuration.default_task_memory_mb()


def task_cpu_cores(task: Task) -> int:
    reqs = task.resource_requirements
    return reqs.cpu_cores if reqs is not None else 1


def estimated_cost_ms(task: Task, configuration: Configuration) -> int:
    """Worst-case wall time of one attempt, the only duration signal a task declares."""
    return round(task.timeout_ms * configuration.timeout_multiplier)


def is_io_intensive(task: Task) -> bool:
    return any(pattern.search(task.command) for pattern in IO_INTENSIVE_PATTERNS)


def resource_weight(task: Task, configuration: Configuration) -> float:
    return (
        1.0
        + task.timeout_ms / DEFAULT_TIMEOUT_MS
        + 0.2 * len(task.depends_on)
        + task_memory_mb(task, configuration) / 1024
        + 0.5 * (task_cpu_cores(task) - 1)
    )


def check_resources(graph: TaskGraph, configuration: Configuration) -> None:
    """Raise ResourceError listing every task that can never be admitted."""
    problems: list[str] = []
    for task in graph:
        memory = task_memory_mb(task, configuration)
        if memory > configuration.memory_limit:
            problems.append(
                f"task '{task.name}' needs {memory}MB but memory_limit is "
                f"{configuration.memory_limit}MB"
            )
        cores = task_cpu_cores(task)
        if cores > configuration.max_parallel:
            problems.append(
                f"task '{task.name}' needs {cores} cpu cores but max_parallel is "
                f"{configuration.max_parallel}"
            )
    if problems:
        raise ResourceError("; ".join(problems))


def topological_levels(graph: TaskGraph) -> list[list[str]]:
    """Group tasks by Kahn round, each round in declaration order."""
    dependents, in_degree = graph.build_adjacency()
    degrees = dict(in_degree)
    current = [name for name in graph.names if degrees[name] == 0]
    levels: list[list[str]] = []
    seen = 0

    while current:
        levels.append(current)
        seen += len(current)
        ready: list[str] = []
        for name in current:
            for child in dependents[name]:
                degrees[child] -= 1
                if degrees[child] == 0:
                    ready.append(child)
        current = sorted(ready, key=graph.declaration_index)

    if seen != len(graph):
        raise CircularDependencyError(find_cycle(graph) or [])
    return levels


def critical_path(graph: TaskGraph, configuration: Configuration) -> list[str]:
    """Longest chain of dependent tasks by estimated cost."""
    if len(graph) == 0:
        return []
    finish: dict[str, int] = {}
    previous: dict[str, str | None] = {}
    for level in topological_levels(graph):
        for name in level:
            task = graph.get(name)
            best_dep: str | None = None
            for dep in task.depends_on:
                if dep not in finish:
                    continue
                if best_dep is None or finish[dep] > finish[best_dep]:
                    best_dep = dep
            start = finish[best_dep] if best_dep is not None else 0
            finish[name] = start + estimated_cost_ms(task, configuration)
            previous[name] = best_dep

    end = max(graph.names, key=lambda name: (finish[name], -graph.declaration_index(name)))
    path: list[str] = []
    cursor: str | None = end
    while cursor is not None:
        path.append(cursor)
        cursor = previous[cursor]
    path.reverse()
    return path


def find_conflicts(graph: TaskGraph, waves: list[ExecutionWave]) -> list[str]:
    warnings: list[str] = []
    for task in graph:
        reserved = [key for key in task.environment if key in RESERVED_ENV_VARS]
        if reserved:
            warnings.append(
                f"task '{task.name}' overrides reserved environment variables: {reserved}"
            )

    for wave in waves:
        if len(wave) < 2:
            continue
        by_directory: dict[str, list[str]] = defaultdict(list)
        env_values: dict[str, dict[str, str]] = defaultdict(dict)
        for name in wave:
            task = graph.get(name)
            if task.working_directory is not None:
                by_directory[task.working_directory].append(name)
            for key, value in task.environment.items():
                env_values[key][name] = value
        for directory, names in by_directory.items():
            if len(names) > 1:
                warnings.append(
                    f"wave {wave.index}: working directory '{directory}' shared by "
                    f"parallel tasks {names}"
                )
        for key, assignments in env_values.items():
            if len(set(assignments.values())) > 1:
                detail = ", ".join(f"{name}={value}" for name, value in assignments.items())
                warnings.append(
                    f"wave {wave.index}: environment variable '{key}' has conflicting "
                    f"values: {detail}"
                )
        io_heavy = [name for name in wave if is_io_intensive(graph.get(name))]
        if len(io_heavy) > MAX_PARALLEL_IO_TASKS:
            warnings.append(
                f"wave {wave.index}: {len(io_heavy)} I/O intensive tasks run in parallel "
                f"(more than {MAX_PARALLEL_IO_TASKS}): {io_heavy}"
            )
    return warnings


class ExecutionPlanner:
    """Turn a validated graph into ordered waves.

    Within a Kahn level, ``parallel`` tasks share one wave while every
    exclusive task gets a wave of its own. With ``enable_optimizations`` the
    level is ordered critical-path first, then heaviest first; otherwise
    declaration order is kept.
    """

    def plan(self, graph: TaskGraph, configuration: Configuration) -> list[ExecutionWave]:
        check_resources(graph, configuration)
        levels = topological_levels(graph)
        on_critical_path: set[str] = set()
        if configuration.enable_optimizations:
            on_critical_path = set(critical_path(graph, configuration))

        waves: list[ExecutionWave] = []
        for level in levels:
            ordered = self._order_level(graph, level, configuration, on_critical_path)
            shared: list[str] = []
            slots: list[list[str] | str] = []
            for name in ordered:
                if graph.get(name).parallel:
                    if not shared:
                        slots.append(shared)
                    shared.append(name)
                else:
                    slots.append(name)
            for slot in slots:
                if isinstance(slot, str):
                    waves.append(ExecutionWave(len(waves), (slot,), exclusive=True))
                else:
                    waves.append(ExecutionWave(len(waves), tuple(slot)))
        return waves

    def build(self, graph: TaskGraph, configuration: Configuration) -> ExecutionPlan:
        waves = self.plan(graph, configuration)
        estimated = 0
        peak_memory = 0
        for wave in waves:
            tasks = [graph.get(name) for name in wave]
            estimated += max(estimated_cost_ms(task, configuration) for task in tasks)
            demand = sum(task_memory_mb(task, configuration) for task in tasks)
            peak_memory = max(peak_memory, min(demand, configuration.memory_limit))
        warnings = find_conflicts(graph, waves)
        for warning in warnings:
            logger.warning("resource conflict: %s", warning)
        plan = ExecutionPlan(
            waves=waves,
            critical_path=critical_path(graph, configuration),
            estimated_duration_ms=estimated,
            peak_memory_mb=peak_memory,
            warnings=warnings,
        )
        logger.info(
            "planned %d task(s) into %d wave(s), critical path %s",
            len(graph),
            len(waves),
            " -> ".join(plan.critical_path),
        )
        return plan

    @staticmethod
    def _order_level(
        graph: TaskGraph,
        level: list[str],
        configuration: Configuration,
        on_critical_path: set[str],
    ) -> list[str]:
        if not configuration.enable_optimizations:
            return sorted(level, key=graph.declaration_index)
        return sorted(
            level,
            key=lambda name: (
                name not in on_critical_path,
                -resource_weight(graph.get(name), configuration),
                graph.declaration_index(name),
            ),
        )
