from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

TaskStatus = Literal["SUCCESS", "FAILED", "SKIPPED", "TIMED_OUT"]
RunStatus = Literal["COMPLETED", "ABORTED"]
TASK_STATUS_VALUES: set[str] = {"SUCCESS", "FAILED", "SKIPPED", "TIMED_OUT"}
RUN_STATUS_VALUES: set[str] = {"COMPLETED", "ABORTED"}

SKIP_CONDITION_FALSE = "condition_false"
SKIP_DEPENDENCY_NOT_SUCCESS = "dependency_not_success"
SKIP_RUN_ABORTED = "run_aborted"


@dataclass(slots=True)
class ExecutionResult:
    name: str
    status: TaskStatus
    attempts: int = 0
    duration_sec: float = 0.0
    exit_code: int | None = None
    output: str = ""
    error: str | None = None
    skip_reason: str | None = None
    wave_index: int | None = None
    started_at: str | None = None
    ended_at: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "SUCCESS"

    @property
    def attempted(self) -> bool:
        return self.status != "SKIPPED"

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "status": self.status,
            "attempts": self.attempts,
            "duration_sec": self.duration_sec,
            "exit_code": self.exit_code,
            "output": self.output,
            "error": self.error,
            "skip_reason": self.skip_reason,
            "wave_index": self.wave_index,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }


def skipped_result(name: str, reason: str, *, wave_index: int | None = None) -> ExecutionResult:
    return ExecutionResult(name=name, status="SKIPPED", skip_reason=reason, wave_index=wave_index)


@dataclass(slots=True)
class RunResult:
    status: RunStatus
    quality_score: float
    results: dict[str, ExecutionResult]
    waves: list[list[str]]
    started_at: str
    ended_at: str
    duration_sec: float
    abort_reason: str | None = None
    critical_path: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def count(self, status: TaskStatus) -> int:
        return sum(1 for result in self.results.values() if result.status == status)

    @property
    def succeeded(self) -> int:
        return self.count("SUCCESS")

    @property
    def failed(self) -> int:
        return self.count("FAILED")

    @property
    def timed_out(self) -> int:
        return self.count("TIMED_OUT")

    @property
    def skipped(self) -> int:
        return self.count("SKIPPED")

    @property
    def ok(self) -> bool:
        return self.status == "COMPLETED" and self.failed == 0 and self.timed_out == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "quality_score": self.quality_score,
            "abort_reason": self.abort_reason,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_sec": self.duration_sec,
            "waves": self.waves,
            "critical_path": self.critical_path,
            "recommendations": self.recommendations,
            "summary": {
                "total": len(self.results),
                "succeeded": self.succeeded,
                "failed": self.failed,
                "timed_out": self.timed_out,
                "skipped": self.skipped,
            },
            "tasks": {name: result.to_dict() for name, result in self.results.items()},
        }
