"""Immutable task graph."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from waverun.config.schema import Task
from waverun.util.errors import DuplicateTaskError


class TaskGraph:
    """Tasks keyed by name plus their ``depends_on`` edges, in declaration order."""

    __slots__ = ("_tasks", "_order", "_index", "_dependents")

    def __init__(self, tasks: Mapping[str, Task], order: tuple[str, ...]) -> None:
        self._tasks = MappingProxyType(dict(tasks))
        self._order = order
        self._index = {name: idx for idx, name in enumerate(order)}
        dependents: dict[str, list[str]] = {name: [] for name in order}
        for name in order:
            for dep in self._tasks[name].depends_on:
                if dep in dependents:
                    dependents[dep].append(name)
        self._dependents = {name: tuple(children) for name, children in dependents.items()}

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> TaskGraph:
        task_list = list(tasks)
        counts = Counter(task.name for task in task_list)
        duplicates = sorted(name for name, count in counts.items() if count > 1)
        if duplicates:
            raise DuplicateTaskError(duplicates)
        return cls(
            {task.name: task for task in task_list},
            tuple(task.name for task in task_list),
        )

    @property
    def names(self) -> tuple[str, ...]:
        return self._order

    @property
    def tasks(self) -> Mapping[str, Task]:
        return self._tasks

    def get(self, name: str) -> Task:
        return self._tasks[name]

    def dependents(self, name: str) -> tuple[str, ...]:
        return self._dependents.get(name, ())

    def declaration_index(self, name: str) -> int:
        return self._index[name]

    def build_adjacency(self) -> tuple[dict[str, list[str]], dict[str, int]]:
        """Return dependents adjacency and in-degree by task name.

        Only edges between known tasks are counted; dangling references are
        the validator's concern.
        """
        dependents = {name: list(self._dependents[name]) for name in self._order}
        in_degree = {
            name: sum(1 for dep in self._tasks[name].depends_on if dep in self._tasks)
            for name in self._order
        }
        return dependents, in_degree

    def __iter__(self) -> Iterator[Task]:
        return (self._tasks[name] for name in self._order)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks
