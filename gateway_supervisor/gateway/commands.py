"""Run one-shot gateway CLI commands against the running gateway."""

from .. import config
from ..log_config import get_logger
from ..types import CliResult, Sandbox
from .utils import wait_for_process

# Commands that work offline against the config and take no --url
OFFLINE_COMMANDS = (
    "config get",
    "config set",
    "config unset",
    "--help",
    "--version",
    "doctor",
    "message",
    "channels",
)

# Commands that install or generate state and need the longer budget
LONG_RUNNING_COMMANDS = ("doctor --fix", "web link")

log = get_logger("commands", service="gateway")


def gateway_url(port: int = config.GATEWAY_PORT) -> str:
    return f"ws://localhost:{port}"


def build_cli_command(command: str, port: int = config.GATEWAY_PORT) -> str:
    """
    Validate a CLI command and point it at the local gateway.

    Raises:
        ValueError: if the command is empty or isn't a gateway CLI command
    """
    command = command.strip()
    if not command:
        raise ValueError("command is required")
    if not command.startswith(f"{config.GATEWAY_CLI} "):
        raise ValueError(f"Only {config.GATEWAY_CLI} commands are allowed")

    if any(offline in command for offline in OFFLINE_COMMANDS):
        return command
    return f"{command} --url {gateway_url(port)}"


def cli_timeout_ms(command: str) -> int:
    if any(long_running in command for long_running in LONG_RUNNING_COMMANDS):
        return config.CLI_LONG_TIMEOUT_MS
    return config.CLI_TIMEOUT_MS


async def run_cli(
    sandbox: Sandbox,
    command: str,
    port: int = config.GATEWAY_PORT,
    timeout_ms: int | None = None,
) -> CliResult:
    """Run a gateway CLI command and collect its output."""
    full_command = build_cli_command(command, port)
    timeout = timeout_ms if timeout_ms is not None else cli_timeout_ms(full_command)

    log.info("cli.start", command=full_command, timeout_ms=timeout)
    proc = await sandbox.start_process(full_command)
    finished = await wait_for_process(proc, timeout)
    logs = await proc.get_logs()

    if not finished:
        log.warn("cli.timeout", command=full_command, process_id=proc.id)
    log.info("cli.complete", process_id=proc.id, exit_code=proc.exit_code)
    return CliResult(exit_code=proc.exit_code, stdout=logs.stdout or "", stderr=logs.stderr or "")
