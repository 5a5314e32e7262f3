"""
Device pairing through the gateway CLI.

Devices that connect to the gateway wait in a pending list until an admin
approves them. Both operations shell out to ``clawdbot devices`` against the
running gateway; callers are expected to ensure the gateway first.
"""

import json
import re
from typing import Any

from .. import config
from ..errors import CliOutputError
from ..log_config import get_logger
from ..types import CliResult, Sandbox
from .commands import run_cli

LIST_COMMAND = f"{config.GATEWAY_CLI} devices list --json"

# The CLI may print log lines around the JSON document
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_REQUEST_ID = re.compile(r"^[A-Za-z0-9_.:-]+$")

log = get_logger("devices", service="gateway")


def approve_command(request_id: str) -> str:
    """
    Raises:
        ValueError: if the request id is empty or not a plain token
    """
    if not request_id or not _REQUEST_ID.match(request_id):
        raise ValueError("requestId must be a non-empty token")
    return f"{config.GATEWAY_CLI} devices approve {request_id}"


def extract_json(stdout: str) -> dict[str, Any] | None:
    """
    Pull the JSON object out of CLI output.

    Returns None when the output holds no object.

    Raises:
        CliOutputError: if an object is present but isn't valid JSON
    """
    match = _JSON_OBJECT.search(stdout)
    if match is None:
        return None
    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise CliOutputError(f"Failed to parse CLI output: {e}", raw=stdout) from e


def approval_succeeded(result: CliResult) -> bool:
    return "approved" in result.stdout.lower() or result.exit_code == 0


async def list_devices(sandbox: Sandbox, port: int = config.GATEWAY_PORT) -> dict[str, Any]:
    """Pending and paired devices, or the raw output when it can't be parsed."""
    result = await run_cli(sandbox, LIST_COMMAND, port)
    fallback = {"pending": [], "paired": [], "raw": result.stdout, "stderr": result.stderr}
    try:
        data = extract_json(result.stdout)
    except CliOutputError:
        log.warn("devices.parse_error", exit_code=result.exit_code)
        return {**fallback, "parseError": "Failed to parse CLI output"}
    return data if data is not None else fallback


async def approve_device(
    sandbox: Sandbox, request_id: str, port: int = config.GATEWAY_PORT
) -> dict[str, Any]:
    result = await run_cli(sandbox, approve_command(request_id), port)
    success = approval_succeeded(result)
    log.info("devices.approve", request_id=request_id, success=success)
    return {
        "success": success,
        "requestId": request_id,
        "message": "Device approved" if success else "Approval may have failed",
        "stdout": result.stdout,
        "stderr": result.stderr,
    }


async def approve_all(sandbox: Sandbox, port: int = config.GATEWAY_PORT) -> dict[str, Any]:
    """
    Approve every pending device, continuing past individual failures.

    Raises:
        CliOutputError: if the device list can't be parsed
    """
    listing = await run_cli(sandbox, LIST_COMMAND, port)
    data = extract_json(listing.stdout) or {}
    pending = data.get("pending") or []
    if not pending:
        return {"approved": [], "message": "No pending devices to approve"}

    approved: list[str] = []
    failed: list[dict[str, Any]] = []
    for device in pending:
        request_id = str(device.get("requestId", ""))
        try:
            result = await run_cli(sandbox, approve_command(request_id), port)
        except Exception as e:
            log.warn("devices.approve_error", request_id=request_id, exc=e)
            failed.append({"requestId": request_id, "success": False, "error": str(e)})
            continue

        if approval_succeeded(result):
            approved.append(request_id)
        else:
            failed.append({"requestId": request_id, "success": False})

    log.info("devices.approve_all", approved=len(approved), failed=len(failed))
    return {
        "approved": approved,
        "failed": failed,
        "message": f"Approved {len(approved)} of {len(pending)} device(s)",
    }
