from __future__ import annotations

import math
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from waverun.config.presets import get_preset
from waverun.config.schema import Configuration, ResourceRequirements, Task
from waverun.util.errors import ConfigError

_SAFE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_TASK_NAME_MAX_LEN = 128
_COMMAND_MAX_LEN = 1000
_TIMEOUT_MAX_MS = 24 * 60 * 60 * 1000
_RETRY_COUNT_MAX = 10
_MAX_PARALLEL_LIMIT = 32
_MEMORY_LIMIT_RANGE_MB = (512, 131_072)
_TIMEOUT_MULTIPLIER_MAX = 10.0
_ALLOWED_ROOT_KEYS = {"configuration", "tasks"}
_ALLOWED_CONFIGURATION_KEYS = {
    "preset",
    "name",
    "max_parallel",
    "quality_threshold",
    "timeout_multiplier",
    "memory_limit",
    "enable_optimizations",
    "retry_backoff_base_sec",
    "retry_backoff_max_sec",
}
_ALLOWED_TASK_KEYS = {
    "name",
    "command",
    "description",
    "timeout",
    "retry_count",
    "retry_backoff_sec",
    "depends_on",
    "environment",
    "working_directory",
    "parallel",
    "condition",
    "resources",
    "critical",
}
_ALLOWED_RESOURCE_KEYS = {"cpu_cores", "memory_mb"}


@dataclass(frozen=True, slots=True)
class Pipeline:
    tasks: list[Task]
    configuration: Configuration


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_finite_real_number(value: object) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value)


def _is_non_blank_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip()) and "\x00" not in value


def _is_str_without_nul(value: object) -> bool:
    return isinstance(value, str) and "\x00" not in value


def _is_valid_env_key(value: object) -> bool:
    return _is_non_blank_str(value) and "=" not in str(value)


def _is_safe_name(value: object) -> bool:
    return isinstance(value, str) and _SAFE_NAME_PATTERN.fullmatch(value) is not None


def _reject_unknown(where: str, raw: dict[str, Any], allowed: set[str]) -> None:
    if any(not isinstance(key, str) for key in raw):
        raise ConfigError(f"{where} fields must use string keys")
    unknown = set(raw.keys()) - allowed
    if unknown:
        raise ConfigError(f"{where} has unknown fields: {sorted(unknown)}")


def normalize_command(command: str | list[str]) -> str:
    if isinstance(command, str):
        if not command.strip():
            raise ConfigError("command string must not be empty")
        if "\x00" in command:
            raise ConfigError("command must not contain null bytes")
        return command
    if isinstance(command, list) and command and all(_is_non_blank_str(p) for p in command):
        return shlex.join(command)
    raise ConfigError("command must be str or non-empty list[str]")


def _ensure_list_str(name: str, value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(_is_non_blank_str(v) for v in value):
        raise ConfigError(f"{name} must be list of non-empty strings")
    return value


def _parse_resources(task_name: str, raw: Any) -> ResourceRequirements | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigError(f"task '{task_name}' resources must be mapping")
    _reject_unknown(f"task '{task_name}' resources", raw, _ALLOWED_RESOURCE_KEYS)
    cpu_cores = raw.get("cpu_cores", 1)
    memory_mb = raw.get("memory_mb")
    if not _is_int(cpu_cores) or cpu_cores < 1:
        raise ConfigError(f"task '{task_name}' resources.cpu_cores must be int >= 1")
    if memory_mb is not None and (not _is_int(memory_mb) or memory_mb < 1):
        raise ConfigError(f"task '{task_name}' resources.memory_mb must be int >= 1")
    return ResourceRequirements(cpu_cores=cpu_cores, memory_mb=memory_mb)


def _parse_task(raw: Any) -> Task:
    if not isinstance(raw, dict):
        raise ConfigError("task must be mapping")
    if "name" not in raw or not _is_non_blank_str(raw["name"]):
        raise ConfigError("task.name is required and must be non-empty string")
    name = raw["name"]
    if len(name) > _TASK_NAME_MAX_LEN:
        raise ConfigError(f"task.name must be <= {_TASK_NAME_MAX_LEN} characters")
    if not _is_safe_name(name):
        raise ConfigError("task.name must match ^[A-Za-z0-9][A-Za-z0-9._-]*$")
    _reject_unknown(f"task '{name}'", raw, _ALLOWED_TASK_KEYS)
    if "command" not in raw:
        raise ConfigError(f"task '{name}' missing command")

    timeout = raw.get("timeout", 30_000)
    if not _is_int(timeout) or timeout <= 0:
        raise ConfigError(f"task '{name}' timeout must be int > 0 (milliseconds)")
    if timeout > _TIMEOUT_MAX_MS:
        raise ConfigError(f"task '{name}' timeout must be <= 24 hours ({_TIMEOUT_MAX_MS} ms)")

    retry_count = raw.get("retry_count", 0)
    if not _is_int(retry_count) or retry_count < 0:
        raise ConfigError(f"task '{name}' retry_count must be int >= 0")
    if retry_count > _RETRY_COUNT_MAX:
        raise ConfigError(f"task '{name}' retry_count must be <= {_RETRY_COUNT_MAX}")

    raw_backoff = raw.get("retry_backoff_sec", [])
    if not isinstance(raw_backoff, list) or not all(
        _is_finite_real_number(v) and v >= 0 for v in raw_backoff
    ):
        raise ConfigError(f"task '{name}' retry_backoff_sec must be list[number>=0]")
    if len(raw_backoff) > retry_count:
        raise ConfigError(f"task '{name}' retry_backoff_sec length must be <= retry_count")

    depends_on = _ensure_list_str(f"task '{name}' depends_on", raw.get("depends_on", []))
    if len(set(depends_on)) != len(depends_on):
        raise ConfigError(f"task '{name}' has duplicate dependencies")

    working_directory = raw.get("working_directory")
    if working_directory is not None and not _is_non_blank_str(working_directory):
        raise ConfigError(f"task '{name}' working_directory must be non-empty string")
    if working_directory is not None and any(ch in working_directory for ch in "\r\n"):
        raise ConfigError(f"task '{name}' working_directory must not contain newlines")

    environment = raw.get("environment") or {}
    if not isinstance(environment, dict) or not all(
        _is_valid_env_key(k) and _is_str_without_nul(v) for k, v in environment.items()
    ):
        raise ConfigError(f"task '{name}' environment must be dict[str, str]")

    for flag in ("parallel", "critical"):
        if flag in raw and not isinstance(raw[flag], bool):
            raise ConfigError(f"task '{name}' {flag} must be bool")

    condition = raw.get("condition")
    if condition is not None and not _is_non_blank_str(condition):
        raise ConfigError(f"task '{name}' condition must be non-empty string")

    command = normalize_command(raw["command"])
    if len(command) > _COMMAND_MAX_LEN:
        raise ConfigError(f"task '{name}' command must be <= {_COMMAND_MAX_LEN} characters")

    description = raw.get("description")
    if description is not None and not isinstance(description, str):
        raise ConfigError(f"task '{name}' description must be string")

    return Task(
        name=name,
        command=command,
        timeout_ms=timeout,
        retry_count=retry_count,
        depends_on=tuple(depends_on),
        environment=dict(environment),
        working_directory=working_directory,
        parallel=raw.get("parallel", False),
        condition=condition,
        resource_requirements=_parse_resources(name, raw.get("resources")),
        description=description,
        critical=raw.get("critical", False),
        retry_backoff_sec=tuple(float(v) for v in raw_backoff),
    )


def _check_ranges(configuration: Configuration) -> Configuration:
    """Reject settings outside the limits a pipeline file may ask for."""
    if configuration.max_parallel > _MAX_PARALLEL_LIMIT:
        raise ConfigError(f"max_parallel must be <= {_MAX_PARALLEL_LIMIT}")
    low, high = _MEMORY_LIMIT_RANGE_MB
    if not low <= configuration.memory_limit <= high:
        raise ConfigError(f"memory_limit must be between {low} and {high} (MB)")
    if configuration.timeout_multiplier > _TIMEOUT_MULTIPLIER_MAX:
        raise ConfigError(f"timeout_multiplier must be <= {_TIMEOUT_MULTIPLIER_MAX}")
    return configuration


def parse_configuration(raw: Any) -> Configuration:
    if raw is None:
        return Configuration()
    if not isinstance(raw, dict):
        raise ConfigError("configuration must be mapping")
    _reject_unknown("configuration", raw, _ALLOWED_CONFIGURATION_KEYS)
    values: dict[str, Any] = {}
    preset = raw.get("preset")
    if preset is not None:
        if not isinstance(preset, str):
            raise ConfigError("configuration.preset must be string")
        values.update(get_preset(preset))
        values["name"] = preset
    values.update({key: value for key, value in raw.items() if key != "preset"})
    multiplier = values.get("timeout_multiplier")
    if _is_int(multiplier):
        values["timeout_multiplier"] = float(multiplier)
    return _check_ranges(Configuration(**values))


def parse_pipeline(raw: Any) -> Pipeline:
    if not isinstance(raw, dict):
        raise ConfigError("pipeline root must be a mapping")
    _reject_unknown("pipeline", raw, _ALLOWED_ROOT_KEYS)
    raw_tasks = raw.get("tasks")
    if not isinstance(raw_tasks, list) or not raw_tasks:
        raise ConfigError("pipeline.tasks must be a non-empty list")
    return Pipeline(
        tasks=[_parse_task(task) for task in raw_tasks],
        configuration=parse_configuration(raw.get("configuration")),
    )


def load_pipeline(path: Path) -> Pipeline:
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"pipeline file not found: {path}") from exc
    except UnicodeError as exc:
        raise ConfigError(f"failed to decode pipeline file as utf-8: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"failed to read pipeline file: {path}") from exc

    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse yaml: {exc}") from exc
    return parse_pipeline(raw)
