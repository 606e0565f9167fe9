from __future__ import annotations

import pytest

from waverun.config.schema import Task
from waverun.dag.graph import TaskGraph
from waverun.dag.validate import (
    DependencyValidator,
    find_cycle,
    find_missing_dependencies,
    validate_graph,
)
from waverun.util.errors import (
    CircularDependencyError,
    DependencyError,
    DuplicateTaskError,
    MissingDependencyError,
)


def _task(name: str, *deps: str) -> Task:
    return Task(name=name, command=f"echo {name}", depends_on=deps)


def test_graph_keeps_declaration_order_and_dependents() -> None:
    graph = TaskGraph.from_tasks([_task("a"), _task("b", "a"), _task("c", "a", "b")])
    assert graph.names == ("a", "b", "c")
    assert list(task.name for task in graph) == ["a", "b", "c"]
    assert len(graph) == 3
    assert "b" in graph and "z" not in graph
    assert graph.dependents("a") == ("b", "c")
    assert graph.declaration_index("c") == 2
    dependents, in_degree = graph.build_adjacency()
    assert dependents["b"] == ["c"]
    assert in_degree == {"a": 0, "b": 1, "c": 2}


def test_graph_rejects_duplicate_names() -> None:
    with pytest.raises(DuplicateTaskError) as excinfo:
        TaskGraph.from_tasks([_task("a"), _task("b"), _task("a")])
    assert excinfo.value.names == ["a"]
    assert isinstance(excinfo.value, DependencyError)


def test_acyclic_graph_validates() -> None:
    graph = TaskGraph.from_tasks(
        [_task("compile"), _task("test", "compile"), _task("lint", "compile")]
    )
    DependencyValidator().validate(graph)
    assert find_cycle(graph) is None


def test_two_task_cycle_names_both_tasks() -> None:
    graph = TaskGraph.from_tasks([_task("a", "b"), _task("b", "a")])
    with pytest.raises(CircularDependencyError) as excinfo:
        validate_graph(graph)
    cycle = excinfo.value.cycle
    assert set(cycle) == {"a", "b"}
    assert cycle[0] == cycle[-1]
    assert "a" in str(excinfo.value) and "b" in str(excinfo.value)


def test_self_dependency_is_a_cycle() -> None:
    graph = TaskGraph.from_tasks([_task("solo", "solo")])
    with pytest.raises(CircularDependencyError) as excinfo:
        validate_graph(graph)
    assert excinfo.value.cycle == ["solo", "solo"]


def test_cycle_behind_acyclic_prefix_is_found() -> None:
    graph = TaskGraph.from_tasks(
        [_task("root"), _task("x", "root", "z"), _task("y", "x"), _task("z", "y")]
    )
    cycle = find_cycle(graph)
    assert cycle is not None
    assert set(cycle) == {"x", "y", "z"}
    assert "root" not in cycle


def test_missing_dependencies_are_all_reported() -> None:
    graph = TaskGraph.from_tasks([_task("a", "ghost"), _task("b", "a", "phantom")])
    assert find_missing_dependencies(graph) == [("a", "ghost"), ("b", "phantom")]
    with pytest.raises(MissingDependencyError) as excinfo:
        validate_graph(graph)
    assert excinfo.value.missing == [("a", "ghost"), ("b", "phantom")]
    assert "a depends on ghost" in str(excinfo.value)


def test_missing_dependency_reported_before_cycle() -> None:
    graph = TaskGraph.from_tasks([_task("a", "b"), _task("b", "a", "ghost")])
    with pytest.raises(MissingDependencyError):
        validate_graph(graph)
