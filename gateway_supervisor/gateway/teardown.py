"""
Teardown - kill every gateway process before a forced restart.

Killing only the start script isn't enough: its node children can be orphaned
and keep holding the port, so listed processes are killed individually and a
pattern-based pkill sweeps up the rest.
"""

import asyncio
from collections.abc import Awaitable, Callable

from .. import config
from ..log_config import get_logger
from ..types import Sandbox, is_active
from .env_file import redact_command

Sleep = Callable[[float], Awaitable[None]]


def pkill_command() -> str:
    return f"pkill -9 -f {config.GATEWAY_CLI} || pkill -9 -f {config.START_SCRIPT_NAME} || true"


def cleanup_command() -> str:
    return f"rm -f {' '.join(config.STALE_ARTIFACTS)} 2>/dev/null || true"


class Teardown:
    """Best-effort termination of all processes plus stale artifact cleanup."""

    def __init__(self, sandbox: Sandbox, sleep: Sleep = asyncio.sleep):
        self.sandbox = sandbox
        self.sleep = sleep
        self.log = get_logger("teardown", service="gateway")

    async def kill_listed(self) -> int:
        """Kill each starting/running process individually. Returns the kill count."""
        try:
            processes = await self.sandbox.list_processes()
        except Exception as e:
            self.log.warn("teardown.list_error", exc=e)
            return 0

        running = [proc for proc in processes if is_active(proc.status)]
        self.log.info("teardown.kill_listed", count=len(running))

        killed = 0
        for proc in running:
            try:
                self.log.debug(
                    "teardown.kill",
                    process_id=proc.id,
                    command=redact_command(proc.command)[:50],
                )
                await proc.kill()
                killed += 1
            except Exception as e:
                self.log.warn("teardown.kill_error", process_id=proc.id, exc=e)
        return killed

    async def kill_all(self) -> None:
        """Kill everything, remove lock/env files and wait for the port to free. Never raises."""
        self.log.info("teardown.start")
        killed = await self.kill_listed()

        try:
            await self.sandbox.start_process(pkill_command())
            await self.sleep(config.PKILL_SETTLE_S)
        except Exception as e:
            self.log.debug("teardown.pkill_error", exc=e)

        try:
            await self.sandbox.start_process(cleanup_command())
            await self.sleep(config.CLEANUP_SETTLE_S)
        except Exception as e:
            self.log.debug("teardown.cleanup_error", exc=e)

        await self.sleep(config.PORT_RELEASE_SETTLE_S)
        self.log.info("teardown.complete", killed=killed)
