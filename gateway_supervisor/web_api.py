"""
Admin HTTP API for the gateway supervisor.

Thin routes over GatewaySupervisor: status, forced restart and teardown,
process and log inspection, storage status, device pairing and gateway CLI
execution. HTTP status mapping lives here; the supervisor only returns
results or raises StartupFailed.

SECURITY: /api/admin/* requires the admin bearer token (see auth.py).
"""

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

from .auth import verify_admin_token
from .config import GatewayEnv
from .errors import AuthConfigurationError, CliOutputError, StartupFailed
from .gateway import devices
from .gateway.commands import build_cli_command, run_cli
from .gateway.env_file import redact_command
from .gateway.supervisor import GatewaySupervisor
from .log_config import configure_logging, get_logger
from .types import status_name

configure_logging()
log = get_logger("web_api")

LOG_EXCERPT_CHARS = 5000
COMMAND_EXCERPT_CHARS = 100


class CliRequest(BaseModel):
    command: str = ""


def startup_failed_response(e: StartupFailed) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={
            "error": str(e),
            "processId": e.process_id,
            "stderr": e.stderr,
            "stdout": e.stdout,
        },
    )


def create_app(supervisor: GatewaySupervisor, env: GatewayEnv) -> FastAPI:
    """Build the API around one supervisor instance."""

    def require_auth(authorization: str | None = Header(None)) -> None:
        """
        Verify the admin token, raising HTTPException on failure.

        Raises:
            HTTPException: 401 if authentication fails, 503 if auth is misconfigured
        """
        try:
            if not verify_admin_token(authorization, env):
                raise HTTPException(
                    status_code=401,
                    detail="Unauthorized: Invalid or missing admin token",
                )
        except AuthConfigurationError as e:
            raise HTTPException(
                status_code=503,
                detail=f"Service unavailable: Authentication not configured. {e}",
            )

    public = APIRouter(prefix="/api")
    admin = APIRouter(prefix="/api/admin", dependencies=[Depends(require_auth)])

    @public.get("/status")
    async def gateway_status() -> dict:
        candidate = await supervisor.find_existing_candidate()
        if candidate is None:
            return {"ok": False, "status": "not_running"}

        if await supervisor.prober.probe_fast(candidate, supervisor.port):
            return {"ok": True, "status": "running", "processId": candidate.id}
        return {"ok": False, "status": "not_responding", "processId": candidate.id}

    @admin.post("/gateway/restart")
    async def restart_gateway(background_tasks: BackgroundTasks) -> dict:
        previous_id = await supervisor.stop_for_restart()

        async def boot() -> None:
            try:
                handle = await supervisor.ensure_gateway()
                log.info("api.restart_complete", process_id=handle.process_id)
            except StartupFailed as e:
                log.error("api.restart_failed", exc=e, output=e.detail)
            except Exception as e:
                log.error("api.restart_error", exc=e)

        background_tasks.add_task(boot)
        return {
            "success": True,
            "message": (
                "Gateway process killed, new instance starting..."
                if previous_id
                else "No existing process found, starting new instance..."
            ),
            "previousProcessId": previous_id,
        }

    @admin.post("/debug/killall")
    async def kill_all_processes() -> dict:
        await supervisor.kill_all()
        return {"success": True, "message": "Killed all processes"}

    async def ensure_or_503() -> None:
        try:
            await supervisor.ensure_gateway()
        except StartupFailed as e:
            raise startup_failed_response(e)

    @admin.get("/devices")
    async def list_devices() -> dict:
        await ensure_or_503()
        try:
            return await devices.list_devices(supervisor.sandbox, supervisor.port)
        except Exception as e:
            log.error("api.devices_error", exc=e)
            raise HTTPException(status_code=500, detail=str(e))

    @admin.post("/devices/approve-all")
    async def approve_all_devices() -> dict:
        await ensure_or_503()
        try:
            return await devices.approve_all(supervisor.sandbox, supervisor.port)
        except CliOutputError as e:
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to parse device list", "raw": e.raw},
            )
        except Exception as e:
            log.error("api.devices_error", exc=e)
            raise HTTPException(status_code=500, detail=str(e))

    @admin.post("/devices/{request_id}/approve")
    async def approve_device(request_id: str) -> dict:
        try:
            devices.approve_command(request_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        await ensure_or_503()
        try:
            return await devices.approve_device(supervisor.sandbox, request_id, supervisor.port)
        except Exception as e:
            log.error("api.devices_error", request_id=request_id, exc=e)
            raise HTTPException(status_code=500, detail=str(e))

    @admin.get("/debug/processes")
    async def list_processes() -> dict:
        try:
            processes = await supervisor.sandbox.list_processes()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {
            "count": len(processes),
            "processes": [
                {
                    "id": proc.id,
                    "command": redact_command(proc.command)[:COMMAND_EXCERPT_CHARS],
                    "status": status_name(proc.status),
                }
                for proc in processes
            ],
        }

    @admin.get("/debug/gateway-logs")
    async def gateway_logs() -> dict:
        proc = await supervisor.directory.find_latest_gateway_process()
        if proc is None:
            raise HTTPException(status_code=404, detail="No gateway process found")

        logs = await proc.get_logs()
        return {
            "processId": proc.id,
            "status": status_name(proc.status),
            "command": redact_command(proc.command)[:COMMAND_EXCERPT_CHARS],
            "stdout": (logs.stdout or "")[:LOG_EXCERPT_CHARS],
            "stderr": (logs.stderr or "")[:LOG_EXCERPT_CHARS],
        }

    @admin.get("/storage")
    async def storage_status() -> dict:
        status = await supervisor.storage.storage_status()
        return {
            "configured": status.configured,
            "missing": status.missing or None,
            "lastSync": status.last_sync,
            "message": status.message,
        }

    @admin.post("/cli")
    async def run_gateway_cli(request: CliRequest) -> dict:
        try:
            build_cli_command(request.command, supervisor.port)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        await ensure_or_503()
        result = await run_cli(supervisor.sandbox, request.command, supervisor.port)
        return {
            "exitCode": result.exit_code,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }

    app = FastAPI(title="Gateway Supervisor")
    app.include_router(public)
    app.include_router(admin)
    return app
