from __future__ import annotations

import asyncio

DEFAULT_TAIL_BYTES = 64 * 1024


async def read_tail(
    stream: asyncio.StreamReader | None, limit: int = DEFAULT_TAIL_BYTES
) -> str:
    """Drain a stream, keeping only its last ``limit`` bytes."""
    if stream is None:
        return ""
    buffer = bytearray()
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            break
        buffer.extend(chunk)
        if len(buffer) > limit:
            del buffer[: len(buffer) - limit]
    return buffer.decode("utf-8", errors="replace")
