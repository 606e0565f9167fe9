"""DAG validation helpers."""

from __future__ import annotations

import logging

from waverun.dag.graph import TaskGraph
from waverun.util.errors import CircularDependencyError, MissingDependencyError

logger = logging.getLogger(__name__)


def find_missing_dependencies(graph: TaskGraph) -> list[tuple[str, str]]:
    """Return every ``(task, missing_dependency)`` pair in declaration order."""
    return [
        (task.name, dep)
        for task in graph
        for dep in task.depends_on
        if dep not in graph
    ]


def find_cycle(graph: TaskGraph) -> list[str] | None:
    """Return the first cycle as ``[a, b, ..., a]`` or None.

    Iterative depth-first search over ``depends_on`` edges. ``visiting`` holds
    the current stack, ``done`` the nodes whose subtree is known to be acyclic.
    """
    visiting: set[str] = set()
    done: set[str] = set()

    for root in graph.names:
        if root in done:
            continue
        path: list[str] = [root]
        visiting.add(root)
        stack = [iter(graph.get(root).depends_on)]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                finished = path.pop()
                visiting.discard(finished)
                done.add(finished)
                continue
            if nxt not in graph or nxt in done:
                continue
            if nxt in visiting:
                start = path.index(nxt)
                return [*path[start:], nxt]
            visiting.add(nxt)
            path.append(nxt)
            stack.append(iter(graph.get(nxt).depends_on))
    return None


def validate_graph(graph: TaskGraph) -> None:
    """Reject graphs with dangling references or cycles.

    All missing references are reported in one error; only the first cycle
    found is reported.
    """
    missing = find_missing_dependencies(graph)
    if missing:
        logger.warning("dependency validation failed: %d unknown reference(s)", len(missing))
        raise MissingDependencyError(missing)
    cycle = find_cycle(graph)
    if cycle is not None:
        logger.warning("dependency validation failed: cycle %s", " -> ".join(cycle))
        raise CircularDependencyError(cycle)


class DependencyValidator:
    def validate(self, graph: TaskGraph) -> None:
        validate_graph(graph)
