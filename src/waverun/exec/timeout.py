from __future__ import annotations

import asyncio
import os
import signal

_TERMINATE_GRACE_SEC = 1.0


def _signal(proc: asyncio.subprocess.Process, sig: int, *, group: bool) -> None:
    if group and hasattr(os, "killpg"):
        os.killpg(proc.pid, sig)
    else:
        proc.send_signal(sig)


async def stop_process(proc: asyncio.subprocess.Process, *, group: bool = False) -> None:
    """Terminate, then kill if the process ignores the signal.

    With ``group`` the whole process group is signalled, which reaches
    children of a shell started in its own session.
    """
    if proc.returncode is not None:
        return
    try:
        _signal(proc, signal.SIGTERM, group=group)
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_GRACE_SEC)
    except TimeoutError:
        try:
            _signal(proc, signal.SIGKILL, group=group)
        except ProcessLookupError:
            pass
        await proc.wait()


async def wait_with_timeout(
    proc: asyncio.subprocess.Process, timeout_sec: float | None, *, group: bool = False
) -> tuple[bool, int | None]:
    if timeout_sec is None:
        return False, await proc.wait()
    try:
        code = await asyncio.wait_for(proc.wait(), timeout=timeout_sec)
        return False, code
    except TimeoutError:
        await stop_process(proc, group=group)
        return True, None
