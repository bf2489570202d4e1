"""Helpers for cooperative shutdown of long-running coroutines."""

from __future__ import annotations

import asyncio


async def wait_for_shutdown(shutdown_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; return ``True`` as soon as shutdown is requested."""

    if shutdown_event.is_set():
        return True
    if seconds <= 0:
        return False
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


__all__ = ["wait_for_shutdown"]
