"""Concurrency slots and memory shared by running tasks."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass

from waverun.config.schema import Configuration, Task
from waverun.dag.plan import task_cpu_cores
from waverun.util.errors import ResourceError


@dataclass(frozen=True, slots=True)
class Requirement:
    slots: int = 1
    memory_mb: int = 0


@dataclass(frozen=True, slots=True)
class ResourceToken:
    id: int
    requirement: Requirement
    holder: str | None = None


class ResourceBudget:
    """Counting budget of ``max_parallel`` slots and ``memory_limit`` MB.

    Acquisition takes slots and memory together or not at all.
    """

    def __init__(
        self, max_parallel: int, memory_limit: int, *, default_memory_mb: int = 0
    ) -> None:
        if max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")
        if memory_limit < 1:
            raise ValueError("memory_limit must be >= 1")
        self.max_parallel = max_parallel
        self.memory_limit = memory_limit
        self.default_memory_mb = default_memory_mb
        self._in_use_slots = 0
        self._in_use_memory = 0
        self._peak_slots = 0
        self._outstanding: set[int] = set()
        self._ids = itertools.count(1)
        self._condition = asyncio.Condition()

    @classmethod
    def from_configuration(cls, configuration: Configuration) -> ResourceBudget:
        return cls(
            configuration.max_parallel,
            configuration.memory_limit,
            default_memory_mb=configuration.default_task_memory_mb(),
        )

    @property
    def in_use_slots(self) -> int:
        return self._in_use_slots

    @property
    def in_use_memory_mb(self) -> int:
        return self._in_use_memory

    @property
    def peak_slots(self) -> int:
        return self._peak_slots

    @property
    def outstanding(self) -> int:
        return len(self._outstanding)

    def requirement_for(self, task: Task) -> Requirement:
        reqs = task.resource_requirements
        if reqs is None or reqs.memory_mb is None:
            memory = self.default_memory_mb
        else:
            memory = reqs.memory_mb
        return Requirement(slots=task_cpu_cores(task), memory_mb=memory)

    def _check_feasible(self, requirement: Requirement) -> None:
        if requirement.slots > self.max_parallel or requirement.memory_mb > self.memory_limit:
            raise ResourceError(
                f"requirement {requirement.slots} slot(s) / {requirement.memory_mb}MB exceeds "
                f"budget {self.max_parallel} slot(s) / {self.memory_limit}MB"
            )

    def _fits(self, requirement: Requirement) -> bool:
        return (
            self._in_use_slots + requirement.slots <= self.max_parallel
            and self._in_use_memory + requirement.memory_mb <= self.memory_limit
        )

    def _take(self, requirement: Requirement, holder: str | None) -> ResourceToken:
        self._in_use_slots += requirement.slots
        self._in_use_memory += requirement.memory_mb
        self._peak_slots = max(self._peak_slots, self._in_use_slots)
        token = ResourceToken(id=next(self._ids), requirement=requirement, holder=holder)
        self._outstanding.add(token.id)
        return token

    def try_acquire(
        self, requirement: Requirement, *, holder: str | None = None
    ) -> ResourceToken | None:
        """Take resources now or return None without waiting.

        Safe without the lock: nothing here awaits, so no other coroutine can
        interleave on the same event loop.
        """
        self._check_feasible(requirement)
        if not self._fits(requirement):
            return None
        return self._take(requirement, holder)

    async def acquire(
        self,
        requirement: Requirement,
        *,
        holder: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ResourceToken | None:
        """Wait until the requirement fits; None if ``cancel`` gets set first."""
        self._check_feasible(requirement)
        async with self._condition:
            while not self._fits(requirement):
                if cancel is not None and cancel.is_set():
                    return None
                await self._condition.wait()
            if cancel is not None and cancel.is_set():
                return None
            return self._take(requirement, holder)

    async def release(self, token: ResourceToken) -> None:
        async with self._condition:
            if token.id not in self._outstanding:
                raise ResourceError(f"resource token {token.id} released twice")
            self._outstanding.remove(token.id)
            self._in_use_slots -= token.requirement.slots
            self._in_use_memory -= token.requirement.memory_mb
            self._condition.notify_all()

    async def wake_waiters(self) -> None:
        """Let waiters re-check their cancel event."""
        async with self._condition:
            self._condition.notify_all()
