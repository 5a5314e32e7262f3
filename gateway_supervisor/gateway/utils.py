"""Helpers for short-lived sandbox processes."""

import asyncio
import time

from ..types import SandboxProcess, is_active

POLL_INTERVAL_S = 0.1


async def wait_for_process(proc: SandboxProcess, timeout_ms: int) -> bool:
    """
    Poll until the sandbox reports the process finished.

    Returns:
        True if it finished within the timeout, False if still running
    """
    deadline = time.monotonic() + timeout_ms / 1000
    while is_active(proc.status):
        if time.monotonic() >= deadline:
            return False
        await asyncio.sleep(POLL_INTERVAL_S)
    return True
