from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

from waverun.config.schema import Configuration, Task
from waverun.exec.budget import ResourceBudget
from waverun.exec.retry import backoff_for_attempt
from waverun.exec.runner import CommandOutcome, CommandRunner, SubprocessRunner
from waverun.state.model import (
    SKIP_CONDITION_FALSE,
    SKIP_RUN_ABORTED,
    ExecutionResult,
    TaskStatus,
    skipped_result,
)
from waverun.util.time import elapsed_since, now_iso

logger = logging.getLogger(__name__)

RUNNER_EXCEPTION_EXIT_CODE = 70

Sleep = Callable[[float], Awaitable[object]]


def _describe(outcome: CommandOutcome) -> str:
    if outcome.timed_out:
        return "timed out"
    if outcome.start_failed:
        return "failed to start"
    return f"exit code {outcome.exit_code}"


def _final_status(outcome: CommandOutcome) -> TaskStatus:
    if outcome.succeeded:
        return "SUCCESS"
    if outcome.timed_out:
        return "TIMED_OUT"
    return "FAILED"


class ConcurrentExecutor:
    """Run the ready tasks of one wave under a shared resource budget.

    Each task gets its own worker coroutine; finished results go through a
    queue and are yielded by the single consumer in completion order.
    """

    def __init__(
        self,
        budget: ResourceBudget,
        configuration: Configuration,
        runner: CommandRunner | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.budget = budget
        self.configuration = configuration
        self.runner = runner if runner is not None else SubprocessRunner()
        self._sleep = sleep
        self._stop = asyncio.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    async def request_stop(self) -> None:
        """Keep tasks that hold no resources yet from starting."""
        self._stop.set()
        await self.budget.wake_waiters()

    async def run_ready_tasks(
        self, tasks: Sequence[Task], *, wave_index: int | None = None
    ) -> AsyncIterator[ExecutionResult]:
        queue: asyncio.Queue[ExecutionResult] = asyncio.Queue()
        workers = [
            asyncio.create_task(self._worker(task, wave_index, queue), name=f"waverun:{task.name}")
            for task in tasks
        ]
        try:
            for _ in workers:
                yield await queue.get()
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(
        self, task: Task, wave_index: int | None, queue: asyncio.Queue[ExecutionResult]
    ) -> None:
        started_at = now_iso()
        try:
            result = await self._run_task(task, wave_index)
        except Exception as exc:
            logger.exception("task %s crashed in executor", task.name)
            result = ExecutionResult(
                name=task.name,
                status="FAILED",
                error=f"executor error: {exc}",
                wave_index=wave_index,
                started_at=started_at,
                ended_at=now_iso(),
            )
        await queue.put(result)

    async def _evaluate_condition(self, task: Task) -> bool:
        condition = task.condition
        if condition is None:
            return True
        if isinstance(condition, str):
            outcome = await self.runner.run(
                condition,
                env=dict(task.environment),
                cwd=task.working_directory,
                timeout_sec=self.configuration.scaled_timeout_sec(task),
            )
            return outcome.succeeded
        value = condition()
        if inspect.isawaitable(value):
            value = await value
        return bool(value)

    async def _gate_on_condition(
        self, task: Task, wave_index: int | None
    ) -> ExecutionResult | None:
        """Return the final result when the condition stops the task, else None."""
        started_at = now_iso()
        try:
            proceed = await self._evaluate_condition(task)
        except Exception as exc:
            logger.warning("task %s condition failed: %s", task.name, exc)
            return ExecutionResult(
                name=task.name,
                status="FAILED",
                error=f"condition evaluation failed: {exc}",
                wave_index=wave_index,
                started_at=started_at,
                ended_at=now_iso(),
            )
        if not proceed:
            logger.info("task %s skipped: condition is false", task.name)
            return skipped_result(task.name, SKIP_CONDITION_FALSE, wave_index=wave_index)
        return None

    async def _run_task(self, task: Task, wave_index: int | None) -> ExecutionResult:
        if self._stop.is_set():
            return skipped_result(task.name, SKIP_RUN_ABORTED, wave_index=wave_index)

        # A shell condition is a process of its own and runs under the task's token.
        shell_condition = isinstance(task.condition, str)
        if not shell_condition:
            gated = await self._gate_on_condition(task, wave_index)
            if gated is not None:
                return gated

        requirement = self.budget.requirement_for(task)
        token = await self.budget.acquire(requirement, holder=task.name, cancel=self._stop)
        if token is None:
            logger.info("task %s skipped: run aborted before it started", task.name)
            return skipped_result(task.name, SKIP_RUN_ABORTED, wave_index=wave_index)
        try:
            if shell_condition:
                gated = await self._gate_on_condition(task, wave_index)
                if gated is not None:
                    return gated
            return await self._run_attempts(task, wave_index)
        finally:
            await self.budget.release(token)

    async def _run_attempts(self, task: Task, wave_index: int | None) -> ExecutionResult:
        cfg = self.configuration
        timeout_sec = cfg.scaled_timeout_sec(task)
        max_attempts = task.retry_count + 1
        started_at = now_iso()
        started = time.monotonic()
        outcome = CommandOutcome(exit_code=None)
        attempt = 0

        while attempt < max_attempts:
            attempt += 1
            try:
                outcome = await self.runner.run(
                    task.command,
                    env=dict(task.environment),
                    cwd=task.working_directory,
                    timeout_sec=timeout_sec,
                )
            except Exception as exc:
                outcome = CommandOutcome(
                    exit_code=RUNNER_EXCEPTION_EXIT_CODE,
                    stderr=f"runner exception: {exc}",
                )
            if outcome.succeeded:
                break
            if attempt < max_attempts:
                delay = backoff_for_attempt(
                    attempt - 1,
                    task.retry_backoff_sec,
                    base_sec=cfg.retry_backoff_base_sec,
                    max_sec=cfg.retry_backoff_max_sec,
                )
                logger.warning(
                    "task %s attempt %d/%d %s, retrying in %.2fs",
                    task.name,
                    attempt,
                    max_attempts,
                    _describe(outcome),
                    delay,
                )
                await self._sleep(delay)
            else:
                logger.warning(
                    "task %s attempt %d/%d %s", task.name, attempt, max_attempts, _describe(outcome)
                )

        status = _final_status(outcome)
        result = ExecutionResult(
            name=task.name,
            status=status,
            attempts=attempt,
            duration_sec=elapsed_since(started, time.monotonic()),
            exit_code=outcome.exit_code,
            output=outcome.stdout,
            error=outcome.stderr or None,
            wave_index=wave_index,
            started_at=started_at,
            ended_at=now_iso(),
        )
        logger.info("task %s finished %s after %d attempt(s)", task.name, status, attempt)
        return result
