"""Application-level error types."""

from __future__ import annotations


class WaverunError(Exception):
    """Base error for the scheduler."""


class ConfigError(WaverunError):
    """Raised when a pipeline file or configuration value is invalid."""


class DependencyError(WaverunError):
    """Raised when the task graph is structurally invalid."""


class DuplicateTaskError(DependencyError):
    """Raised when two tasks share a name."""

    def __init__(self, names: list[str]) -> None:
        self.names = names
        super().__init__(f"duplicate task names: {names}")


class MissingDependencyError(DependencyError):
    """Raised when tasks reference dependencies that do not exist."""

    def __init__(self, missing: list[tuple[str, str]]) -> None:
        self.missing = missing
        detail = ", ".join(f"{task} depends on {dep}" for task, dep in missing)
        super().__init__(f"unknown dependencies: {detail}")


class CircularDependencyError(DependencyError):
    """Raised when the task graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"circular dependency: {' -> '.join(cycle)}")


class ResourceError(WaverunError):
    """Raised when a resource requirement can never be satisfied."""


class AbortError(WaverunError):
    """Run-level abort decided by the quality gate."""

    def __init__(self, reason: str, result: object | None = None) -> None:
        self.reason = reason
        self.result = result
        super().__init__(f"run aborted: {reason}")
