from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from waverun.exec.capture import read_tail
from waverun.exec.retry import backoff_for_attempt
from waverun.util.time import elapsed_since, now_iso


def test_backoff_for_attempt_uses_configured_values_and_clamps_to_last() -> None:
    backoff = [0.5, 1.0]
    assert backoff_for_attempt(0, backoff) == 0.5
    assert backoff_for_attempt(1, backoff) == 1.0
    assert backoff_for_attempt(5, backoff) == 1.0


def test_backoff_for_attempt_uses_exponential_default_with_cap() -> None:
    assert backoff_for_attempt(0, []) == 1.0
    assert backoff_for_attempt(1, []) == 2.0
    assert backoff_for_attempt(6, []) == 60.0


def test_backoff_for_attempt_honours_configured_base_and_max() -> None:
    assert backoff_for_attempt(0, base_sec=0.25, max_sec=1.0) == 0.25
    assert backoff_for_attempt(2, base_sec=0.25, max_sec=1.0) == 1.0
    assert backoff_for_attempt(3, base_sec=0.25, max_sec=1.0) == 1.0
    assert backoff_for_attempt(4, base_sec=0.0) == 0.0


@pytest.mark.asyncio
async def test_read_tail_keeps_only_last_bytes() -> None:
    stream = asyncio.StreamReader()
    stream.feed_data(b"0123456789" * 1000)
    stream.feed_data(b"END")
    stream.feed_eof()
    tail = await read_tail(stream, limit=8)
    assert tail == "56789END"


@pytest.mark.asyncio
async def test_read_tail_replaces_invalid_utf8() -> None:
    stream = asyncio.StreamReader()
    stream.feed_data(b"ok \xff")
    stream.feed_eof()
    assert await read_tail(stream) == "ok \ufffd"
    assert await read_tail(None) == ""


def test_time_helpers() -> None:
    assert elapsed_since(10.0, 12.34567) == 2.346
    assert elapsed_since(5.0, 4.0) == 0.0
    assert datetime.fromisoformat(now_iso()).tzinfo is not None
