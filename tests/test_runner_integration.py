from __future__ import annotations

import shlex
import sys
import time
from pathlib import Path

import pytest

from waverun.exec.runner import START_FAILED_EXIT_CODE, SubprocessRunner


def _py(code: str) -> str:
    return shlex.join([sys.executable, "-c", code])


@pytest.mark.asyncio
async def test_runner_captures_output_and_exit_code() -> None:
    runner = SubprocessRunner()
    outcome = await runner.run(
        _py("import sys; print('hello'); print('oops', file=sys.stderr); sys.exit(3)"),
        env={},
        cwd=None,
        timeout_sec=10.0,
    )
    assert outcome.exit_code == 3
    assert outcome.timed_out is False
    assert outcome.succeeded is False
    assert outcome.stdout.strip() == "hello"
    assert outcome.stderr.strip() == "oops"


@pytest.mark.asyncio
async def test_runner_applies_environment_and_cwd(tmp_path: Path) -> None:
    runner = SubprocessRunner()
    outcome = await runner.run(
        _py("import os; print(os.environ['WAVE_VALUE']); print(os.getcwd())"),
        env={"WAVE_VALUE": "42"},
        cwd=str(tmp_path),
        timeout_sec=10.0,
    )
    assert outcome.succeeded
    lines = outcome.stdout.splitlines()
    assert lines[0] == "42"
    assert Path(lines[1]).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_runner_timeout_stops_process() -> None:
    runner = SubprocessRunner()
    started = time.monotonic()
    outcome = await runner.run(
        _py("import time; time.sleep(5)"), env={}, cwd=None, timeout_sec=0.2
    )
    assert outcome.timed_out is True
    assert outcome.exit_code is None
    assert "timed out after 0.200s" in outcome.stderr
    assert time.monotonic() - started < 4.0


@pytest.mark.asyncio
async def test_runner_reports_start_failure_for_missing_cwd(tmp_path: Path) -> None:
    runner = SubprocessRunner()
    outcome = await runner.run(
        _py("print('never')"), env={}, cwd=str(tmp_path / "missing"), timeout_sec=5.0
    )
    assert outcome.start_failed is True
    assert outcome.exit_code == START_FAILED_EXIT_CODE
    assert "failed to start process" in outcome.stderr


@pytest.mark.asyncio
async def test_runner_keeps_bounded_tail() -> None:
    runner = SubprocessRunner(tail_bytes=16)
    outcome = await runner.run(
        _py("print('x' * 10000 + 'tail-marker')"), env={}, cwd=None, timeout_sec=10.0
    )
    assert outcome.succeeded
    assert len(outcome.stdout) <= 16
    assert outcome.stdout.endswith("tail-marker\n")
