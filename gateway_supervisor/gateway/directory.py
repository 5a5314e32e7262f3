"""
Process directory - find and classify gateway processes in the sandbox.

The sandbox's process list is the only record of what has been launched. Ids
follow the host's ``proc_<epoch_ms>_<suffix>`` format; the embedded timestamp
is the only ordering signal available, so "most recent wins" is decided here.
"""

import re

from .. import config
from ..log_config import get_logger
from ..types import CandidateKind, Sandbox, SandboxProcess, is_active

_PROCESS_TIMESTAMP = re.compile(r"proc_(\d+)_")


def parse_process_timestamp(process_id: str) -> int:
    """
    Extract the creation timestamp (epoch ms) embedded in a process id.

    Returns 0 for ids that don't carry one, so they sort as oldest.
    """
    match = _PROCESS_TIMESTAMP.search(process_id)
    return int(match.group(1)) if match else 0


def classify_command(command: str) -> CandidateKind:
    """
    Classify a process by its command line.

    Exclusions are checked first: the legacy ``source`` wrapper never worked
    (sh has no ``source``), and CLI subcommands are one-shot, never servers.
    """
    env_file = config.ENV_FILE_PATH
    cli = config.GATEWAY_CLI

    if f"source {env_file}" in command:
        return CandidateKind.LEGACY_BROKEN_WRAPPER

    if f"{cli} devices" in command or f"{cli} --version" in command:
        return CandidateKind.ADMIN_CLI_INVOCATION

    if (
        command == config.START_COMMAND
        or f". {env_file}" in command
        or f"{cli} gateway" in command
    ):
        return CandidateKind.PRIMARY_GATEWAY

    return CandidateKind.UNRELATED


class ProcessDirectory:
    """Read-only view over the sandbox process table."""

    def __init__(self, sandbox: Sandbox):
        self.sandbox = sandbox
        self.log = get_logger("directory", service="gateway")

    async def list_candidates(self) -> list[tuple[SandboxProcess, CandidateKind]]:
        """
        List every process with its classification, newest first.

        A failing list call yields an empty listing: recovery must never block
        on a flaky directory query.
        """
        try:
            processes = await self.sandbox.list_processes()
        except Exception as e:
            self.log.warn("directory.unavailable", exc=e)
            return []

        ordered = sorted(
            processes,
            key=lambda proc: parse_process_timestamp(proc.id),
            reverse=True,
        )
        return [(proc, classify_command(proc.command)) for proc in ordered]

    async def find_existing_candidate(self) -> SandboxProcess | None:
        """Newest primary gateway process that is still starting or running."""
        for proc, kind in await self.list_candidates():
            if kind is not CandidateKind.PRIMARY_GATEWAY:
                continue
            if is_active(proc.status):
                self.log.info(
                    "directory.candidate_found",
                    process_id=proc.id,
                    status=proc.status,
                    command=proc.command[:50],
                )
                return proc
        return None

    async def find_latest_gateway_process(self) -> SandboxProcess | None:
        """Newest process launched through the start script, in any status."""
        for proc, _kind in await self.list_candidates():
            if config.START_SCRIPT_NAME in proc.command:
                return proc
        return None
