from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from waverun.util.errors import ConfigError

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_PARALLEL = 4
DEFAULT_QUALITY_THRESHOLD = 80
DEFAULT_TIMEOUT_MULTIPLIER = 1.0
DEFAULT_MEMORY_LIMIT_MB = 8192
DEFAULT_TASK_MEMORY_MB = 128

Condition = str | Callable[[], object]


def _is_real_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class ResourceRequirements:
    cpu_cores: int = 1
    memory_mb: int | None = None

    def __post_init__(self) -> None:
        if not _is_int(self.cpu_cores) or self.cpu_cores < 1:
            raise ConfigError("resource cpu_cores must be int >= 1")
        if self.memory_mb is not None and (not _is_int(self.memory_mb) or self.memory_mb < 1):
            raise ConfigError("resource memory_mb must be int >= 1")


@dataclass(frozen=True, slots=True)
class Task:
    name: str
    command: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_count: int = 0
    depends_on: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    working_directory: str | None = None
    parallel: bool = False
    condition: Condition | None = None
    resource_requirements: ResourceRequirements | None = None
    description: str | None = None
    critical: bool = False
    retry_backoff_sec: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigError("task name must be non-empty string")
        if not isinstance(self.command, str) or not self.command.strip():
            raise ConfigError(f"task '{self.name}' command must be non-empty string")
        if not _is_int(self.timeout_ms) or self.timeout_ms <= 0:
            raise ConfigError(f"task '{self.name}' timeout must be int > 0 (ms)")
        if not _is_int(self.retry_count) or self.retry_count < 0:
            raise ConfigError(f"task '{self.name}' retry_count must be int >= 0")
        if isinstance(self.depends_on, str):
            raise ConfigError(f"task '{self.name}' depends_on must be a sequence of names")
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        object.__setattr__(self, "retry_backoff_sec", tuple(self.retry_backoff_sec))
        if not all(
            _is_real_number(v) and math.isfinite(v) and v >= 0 for v in self.retry_backoff_sec
        ):
            raise ConfigError(f"task '{self.name}' retry_backoff_sec must be list[number>=0]")
        if self.condition is not None and not (
            callable(self.condition) or isinstance(self.condition, str)
        ):
            raise ConfigError(f"task '{self.name}' condition must be a string or callable")
        if isinstance(self.condition, str) and not self.condition.strip():
            raise ConfigError(f"task '{self.name}' condition cannot be empty string")

    @property
    def timeout_sec(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True, slots=True)
class Configuration:
    max_parallel: int = DEFAULT_MAX_PARALLEL
    quality_threshold: int = DEFAULT_QUALITY_THRESHOLD
    timeout_multiplier: float = DEFAULT_TIMEOUT_MULTIPLIER
    memory_limit: int = DEFAULT_MEMORY_LIMIT_MB
    enable_optimizations: bool = True
    name: str | None = None
    retry_backoff_base_sec: float = 1.0
    retry_backoff_max_sec: float = 60.0

    def __post_init__(self) -> None:
        if not _is_int(self.max_parallel) or self.max_parallel < 1:
            raise ConfigError("max_parallel must be int >= 1")
        if not _is_int(self.quality_threshold) or not 0 <= self.quality_threshold <= 100:
            raise ConfigError("quality_threshold must be int between 0 and 100")
        if (
            not _is_real_number(self.timeout_multiplier)
            or not math.isfinite(self.timeout_multiplier)
            or self.timeout_multiplier <= 0
        ):
            raise ConfigError("timeout_multiplier must be > 0")
        if not _is_int(self.memory_limit) or self.memory_limit < 1:
            raise ConfigError("memory_limit must be int >= 1 (MB)")
        if not isinstance(self.enable_optimizations, bool):
            raise ConfigError("enable_optimizations must be bool")
        for label, value in (
            ("retry_backoff_base_sec", self.retry_backoff_base_sec),
            ("retry_backoff_max_sec", self.retry_backoff_max_sec),
        ):
            if not _is_real_number(value) or not math.isfinite(value) or value < 0:
                raise ConfigError(f"{label} must be a number >= 0")

    def scaled_timeout_sec(self, task: Task) -> float:
        return task.timeout_sec * self.timeout_multiplier

    def default_task_memory_mb(self) -> int:
        """Nominal memory charged to tasks that declare none."""
        return max(1, min(DEFAULT_TASK_MEMORY_MB, self.memory_limit // self.max_parallel))
