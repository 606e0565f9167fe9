"""Quality checkpoints between waves."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Literal

from waverun.config.schema import Configuration, Task
from waverun.state.model import ExecutionResult

logger = logging.getLogger(__name__)

GateAction = Literal["CONTINUE", "ABORT"]
Scorer = Callable[["QualityMetrics"], float]

_FAILED_STATUSES = {"FAILED", "TIMED_OUT"}


@dataclass(frozen=True, slots=True)
class QualityMetrics:
    attempted: int
    succeeded: int
    failed: int
    timed_out: int
    skipped: int
    success_rate: float
    score: float = 0.0
    critical_failures: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class GateDecision:
    action: GateAction
    reason: str | None = None
    metrics: QualityMetrics | None = None

    @property
    def aborted(self) -> bool:
        return self.action == "ABORT"


def success_rate_score(metrics: QualityMetrics) -> float:
    return round(metrics.success_rate * 100, 2)


def recommend(metrics: QualityMetrics) -> tuple[str, ...]:
    """Plain-language follow-ups for the operator, most urgent first."""
    advice: list[str] = []
    if metrics.critical_failures:
        advice.append("Address critical failures before proceeding")
    if metrics.success_rate < 0.8:
        advice.append("Review command dependencies and execution order")
    if metrics.timed_out:
        advice.append("Increase timeout or timeout_multiplier for tasks that timed out")
    return tuple(advice) or ("Pipeline execution quality is acceptable",)


def _is_critical_failure(result: ExecutionResult, task: Task | None) -> bool:
    return task is not None and task.critical and result.status in _FAILED_STATUSES


class QualityGate:
    """Score finished tasks and decide whether the run may continue.

    ``scorer`` maps the counted metrics to a 0-100 score; the default is the
    plain success rate. Skipped tasks never count against the score.
    """

    def __init__(self, scorer: Scorer = success_rate_score) -> None:
        self.scorer = scorer

    def measure(
        self,
        results: Iterable[ExecutionResult],
        tasks: Mapping[str, Task] | None = None,
    ) -> QualityMetrics:
        succeeded = failed = timed_out = skipped = 0
        critical: list[str] = []
        for result in results:
            if result.status == "SUCCESS":
                succeeded += 1
            elif result.status == "FAILED":
                failed += 1
            elif result.status == "TIMED_OUT":
                timed_out += 1
            else:
                skipped += 1
            if tasks is not None and _is_critical_failure(result, tasks.get(result.name)):
                critical.append(result.name)
        attempted = succeeded + failed + timed_out
        metrics = QualityMetrics(
            attempted=attempted,
            succeeded=succeeded,
            failed=failed,
            timed_out=timed_out,
            skipped=skipped,
            success_rate=succeeded / attempted if attempted else 1.0,
            critical_failures=tuple(critical),
        )
        return replace(
            metrics, score=float(self.scorer(metrics)), recommendations=recommend(metrics)
        )

    def checkpoint(
        self,
        results: Iterable[ExecutionResult],
        configuration: Configuration,
        tasks: Mapping[str, Task] | None = None,
    ) -> GateDecision:
        metrics = self.measure(results, tasks)
        if metrics.critical_failures:
            names = ", ".join(metrics.critical_failures)
            return GateDecision("ABORT", f"critical task failed: {names}", metrics)
        if metrics.score < configuration.quality_threshold:
            reason = (
                f"quality score {metrics.score:.2f} below threshold "
                f"{configuration.quality_threshold}"
            )
            logger.warning("quality gate: %s", reason)
            return GateDecision("ABORT", reason, metrics)
        logger.debug("quality gate passed with score %.2f", metrics.score)
        return GateDecision("CONTINUE", None, metrics)

    def inspect(self, result: ExecutionResult, task: Task) -> GateDecision | None:
        """Immediate abort decision for a single result, or None."""
        if not _is_critical_failure(result, task):
            return None
        reason = f"critical task '{task.name}' ended {result.status}"
        logger.warning("quality gate: %s", reason)
        return GateDecision("ABORT", reason)
