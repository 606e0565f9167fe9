"""Command runners used by the executor."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

from waverun.exec.capture import DEFAULT_TAIL_BYTES, read_tail
from waverun.exec.timeout import stop_process, wait_with_timeout

START_FAILED_EXIT_CODE = 127
_STREAM_DRAIN_GRACE_SEC = 1.0


@dataclass(slots=True)
class CommandOutcome:
    exit_code: int | None
    timed_out: bool = False
    stdout: str = ""
    stderr: str = ""
    start_failed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


async def _drain(*readers: asyncio.Task[str]) -> list[str]:
    try:
        results = await asyncio.wait_for(
            asyncio.gather(*readers, return_exceptions=True), timeout=_STREAM_DRAIN_GRACE_SEC
        )
    except TimeoutError:
        return ["" for _ in readers]
    return [value if isinstance(value, str) else "" for value in results]


class CommandRunner(Protocol):
    async def run(
        self,
        command: str,
        *,
        env: Mapping[str, str],
        cwd: str | None,
        timeout_sec: float | None,
    ) -> CommandOutcome: ...


class SubprocessRunner:
    """Run commands through the system shell.

    The shell gets its own session so a timeout can stop everything it
    spawned. Output is kept as a bounded tail per stream.
    """

    def __init__(self, *, tail_bytes: int = DEFAULT_TAIL_BYTES, inherit_env: bool = True) -> None:
        self.tail_bytes = tail_bytes
        self.inherit_env = inherit_env

    def _merged_env(self, env: Mapping[str, str]) -> dict[str, str]:
        merged = os.environ.copy() if self.inherit_env else {}
        merged.update(env)
        return merged

    async def run(
        self,
        command: str,
        *,
        env: Mapping[str, str],
        cwd: str | None,
        timeout_sec: float | None,
    ) -> CommandOutcome:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                env=self._merged_env(env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            return CommandOutcome(
                exit_code=START_FAILED_EXIT_CODE,
                stderr=f"failed to start process: {exc}",
                start_failed=True,
            )

        out_reader = asyncio.create_task(read_tail(proc.stdout, self.tail_bytes))
        err_reader = asyncio.create_task(read_tail(proc.stderr, self.tail_bytes))
        try:
            timed_out, exit_code = await wait_with_timeout(proc, timeout_sec, group=True)
        except asyncio.CancelledError:
            out_reader.cancel()
            err_reader.cancel()
            await stop_process(proc, group=True)
            raise
        stdout, stderr = await _drain(out_reader, err_reader)

        if timed_out:
            note = f"timed out after {timeout_sec:.3f}s"
            stderr = f"{stderr}\n{note}" if stderr else note
        return CommandOutcome(
            exit_code=exit_code,
            timed_out=timed_out,
            stdout=stdout,
            stderr=stderr,
        )
