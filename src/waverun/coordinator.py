"""Run a pipeline wave by wave: validate, plan, execute, gate."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from typing import Literal

from waverun.config.schema import Configuration, Task
from waverun.dag.graph import TaskGraph
from waverun.dag.plan import ExecutionPlan, ExecutionPlanner
from waverun.dag.validate import DependencyValidator
from waverun.exec.budget import ResourceBudget
from waverun.exec.executor import ConcurrentExecutor, Sleep
from waverun.exec.runner import CommandRunner
from waverun.quality.gate import QualityGate
from waverun.state.model import (
    SKIP_DEPENDENCY_NOT_SUCCESS,
    SKIP_RUN_ABORTED,
    ExecutionResult,
    RunResult,
    skipped_result,
)
from waverun.util.errors import AbortError, WaverunError
from waverun.util.time import elapsed_since, now_iso

logger = logging.getLogger(__name__)

CoordinatorState = Literal[
    "IDLE", "VALIDATING", "PLANNING", "RUNNING", "DRAINING", "COMPLETED", "ABORTED"
]


class ExecutionCoordinator:
    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        gate: QualityGate | None = None,
        validator: DependencyValidator | None = None,
        planner: ExecutionPlanner | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.runner = runner
        self.gate = gate if gate is not None else QualityGate()
        self.validator = validator if validator is not None else DependencyValidator()
        self.planner = planner if planner is not None else ExecutionPlanner()
        self._sleep = sleep
        self.state: CoordinatorState = "IDLE"
        self.wave_index: int | None = None
        self.transitions: list[CoordinatorState] = []

    def _transition(self, state: CoordinatorState) -> None:
        logger.debug("coordinator %s -> %s", self.state, state)
        self.state = state
        self.transitions.append(state)

    def _graph(self, tasks: Iterable[Task]) -> TaskGraph:
        graph = TaskGraph.from_tasks(tasks)
        self.validator.validate(graph)
        return graph

    def dry_run(self, tasks: Iterable[Task], configuration: Configuration) -> ExecutionPlan:
        """Validate and plan without running anything."""
        return self.planner.build(self._graph(tasks), configuration)

    async def execute(self, tasks: Iterable[Task], configuration: Configuration) -> RunResult:
        self.transitions = []
        self.wave_index = None
        started_at = now_iso()
        started = time.monotonic()

        self._transition("VALIDATING")
        try:
            graph = self._graph(tasks)
            self._transition("PLANNING")
            plan = self.planner.build(graph, configuration)
        except WaverunError:
            self._transition("ABORTED")
            raise

        executor = ConcurrentExecutor(
            ResourceBudget.from_configuration(configuration),
            configuration,
            self.runner,
            sleep=self._sleep,
        )
        results: dict[str, ExecutionResult] = {}
        abort_reason: str | None = None
        self._transition("RUNNING")

        for wave in plan.waves:
            self.wave_index = wave.index
            ready: list[Task] = []
            for name in wave:
                task = graph.get(name)
                if all(results[dep].succeeded for dep in task.depends_on):
                    ready.append(task)
                else:
                    logger.info("task %s skipped: a dependency did not succeed", name)
                    results[name] = skipped_result(
                        name, SKIP_DEPENDENCY_NOT_SUCCESS, wave_index=wave.index
                    )
            logger.info("wave %d: starting %d of %d task(s)", wave.index, len(ready), len(wave))

            async for result in executor.run_ready_tasks(ready, wave_index=wave.index):
                results[result.name] = result
                decision = self.gate.inspect(result, graph.get(result.name))
                if decision is not None and abort_reason is None:
                    abort_reason = decision.reason
                    self._transition("DRAINING")
                    await executor.request_stop()

            if abort_reason is None:
                decision = self.gate.checkpoint(results.values(), configuration, graph.tasks)
                if decision.aborted:
                    abort_reason = decision.reason
                    self._transition("DRAINING")
            logger.info("wave %d finished", wave.index)
            if abort_reason is not None:
                logger.warning("run aborted after wave %d: %s", wave.index, abort_reason)
                break

        for name in graph.names:
            if name not in results:
                results[name] = skipped_result(name, SKIP_RUN_ABORTED)
        ordered = {name: results[name] for name in graph.names}
        self._transition("ABORTED" if abort_reason is not None else "COMPLETED")

        metrics = self.gate.measure(ordered.values(), graph.tasks)
        return RunResult(
            status="ABORTED" if abort_reason is not None else "COMPLETED",
            quality_score=metrics.score,
            results=ordered,
            waves=plan.wave_names(),
            started_at=started_at,
            ended_at=now_iso(),
            duration_sec=elapsed_since(started, time.monotonic()),
            abort_reason=abort_reason,
            critical_path=plan.critical_path,
            recommendations=list(metrics.recommendations),
        )


def execute(
    tasks: Iterable[Task],
    configuration: Configuration,
    *,
    runner: CommandRunner | None = None,
    raise_on_abort: bool = False,
) -> RunResult:
    """Run a pipeline to completion in a fresh event loop."""
    result = asyncio.run(ExecutionCoordinator(runner=runner).execute(tasks, configuration))
    if raise_on_abort and result.status == "ABORTED":
        raise AbortError(result.abort_reason or "run aborted", result)
    return result


def dry_run(tasks: Iterable[Task], configuration: Configuration) -> ExecutionPlan:
    return ExecutionCoordinator().dry_run(tasks, configuration)
