"""
Gateway supervisor - keep exactly one healthy gateway running in the sandbox.

Each ensure_gateway() call re-derives the gateway's state from the sandbox:

    no candidate   -> launch -> verify -> ready
    candidate      -> probe  -> ready
                              -> reclaim (kill) -> launch -> verify -> ready

Storage mounting and secret writing run first and never block the rest of the
sequence. Only a failed verification after a fresh launch is fatal.
"""

import asyncio
import time

from .. import config
from ..config import GatewayEnv
from ..errors import StartupFailed
from ..log_config import elapsed_ms, get_logger
from ..types import (
    BucketStore,
    GatewayHandle,
    RestartResult,
    Sandbox,
    SandboxProcess,
    SecretWriteResult,
)
from .directory import ProcessDirectory
from .env_file import SecretMaterializer, build_secret_set
from .prober import LivenessProber
from .singleflight import SingleFlight
from .storage import StorageMounter
from .teardown import Teardown

GATEWAY_SLOT = "gateway"


def launch_command(source_env_file: bool) -> str:
    """Start command, wrapped to source the secrets file when one was written."""
    if source_env_file:
        return f"bash -c '. {config.ENV_FILE_PATH}; {config.START_COMMAND}'"
    return config.START_COMMAND


class GatewaySupervisor:
    """Orchestrates mount, secrets, discovery, probing, teardown and launch."""

    def __init__(
        self,
        sandbox: Sandbox,
        env: GatewayEnv,
        bucket: BucketStore | None = None,
        *,
        port: int = config.GATEWAY_PORT,
        startup_timeout_ms: int = config.STARTUP_TIMEOUT_MS,
        directory: ProcessDirectory | None = None,
        prober: LivenessProber | None = None,
        materializer: SecretMaterializer | None = None,
        storage: StorageMounter | None = None,
        teardown: Teardown | None = None,
    ):
        self.sandbox = sandbox
        self.env = env
        self.port = port
        self.startup_timeout_ms = startup_timeout_ms

        self.directory = directory or ProcessDirectory(sandbox)
        self.prober = prober or LivenessProber(extended_timeout_ms=startup_timeout_ms)
        self.materializer = materializer or SecretMaterializer(sandbox, bucket)
        self.storage = storage or StorageMounter(sandbox, env)
        self.teardown = teardown or Teardown(sandbox)

        self._flight = SingleFlight()
        self._slot_lock = asyncio.Lock()
        self.log = get_logger("supervisor", service="gateway", port=port)

    async def ensure_mounted(self) -> bool:
        return await self.storage.ensure_mounted()

    async def find_existing_candidate(self) -> SandboxProcess | None:
        return await self.directory.find_existing_candidate()

    async def ensure_gateway(self) -> GatewayHandle:
        """
        Return a handle to a reachable gateway, launching one if needed.

        Concurrent callers share a single attempt.

        Raises:
            StartupFailed: if a freshly launched gateway never opened its port
        """
        return await self._flight.do(GATEWAY_SLOT, self._ensure_in_slot)

    async def _ensure_in_slot(self) -> GatewayHandle:
        async with self._slot_lock:
            return await self._ensure()

    async def _ensure(self) -> GatewayHandle:
        start = time.time()

        mounted = await self.storage.ensure_mounted()
        secrets_written = await self.materializer.materialize(build_secret_set(self.env))

        candidate = await self.directory.find_existing_candidate()
        if candidate is not None:
            report = await self.prober.probe(candidate, self.port)
            if report.reachable:
                if report.extended:
                    await self.check_health()
                self.log.info(
                    "gateway.ensure",
                    outcome="reused",
                    process_id=candidate.id,
                    extended_probe=report.extended,
                    storage_mounted=mounted,
                    duration_ms=elapsed_ms(start),
                )
                return GatewayHandle(process=candidate, port=self.port, reused=True)

            await self._reclaim(candidate)

        handle = await self._launch(secrets_written)
        self.log.info(
            "gateway.ensure",
            outcome="launched",
            process_id=handle.process_id,
            storage_mounted=mounted,
            secrets_count=secrets_written.count,
            duration_ms=elapsed_ms(start),
        )
        return handle

    async def _reclaim(self, candidate: SandboxProcess) -> None:
        """Kill an unreachable candidate. Failure to kill is not fatal."""
        self.log.info("gateway.reclaim", process_id=candidate.id)
        try:
            await candidate.kill()
        except Exception as e:
            self.log.warn("gateway.kill_error", process_id=candidate.id, exc=e)

    async def _launch(self, secrets_written: SecretWriteResult) -> GatewayHandle:
        command = launch_command(secrets_written.materialized)
        self.log.info(
            "gateway.launch_start",
            command=command,
            secrets_count=secrets_written.count,
        )

        try:
            process = await self.sandbox.start_process(command)
        except Exception as e:
            self.log.error("gateway.launch_error", exc=e)
            raise StartupFailed(f"Failed to start gateway process: {e}") from e

        self.log.info("gateway.launched", process_id=process.id, status=process.status)
        await self._verify(process)
        return GatewayHandle(process=process, port=self.port, reused=False)

    async def _verify(self, process: SandboxProcess) -> None:
        try:
            await process.wait_for_port(self.port, self.startup_timeout_ms)
        except Exception as e:
            self.log.error("gateway.wait_for_port_failed", process_id=process.id, exc=e)
            try:
                logs = await process.get_logs()
            except Exception as log_error:
                self.log.error("gateway.logs_error", process_id=process.id, exc=log_error)
                raise StartupFailed(
                    f"Gateway failed to start: {e}", process_id=process.id
                ) from e

            self.log.error(
                "gateway.startup_failed",
                process_id=process.id,
                stdout=logs.stdout,
                stderr=logs.stderr,
            )
            raise StartupFailed(
                f"Gateway failed to start. Stderr: {logs.stderr or '(empty)'}",
                process_id=process.id,
                stdout=logs.stdout,
                stderr=logs.stderr,
            ) from e

        self.log.info("gateway.ready", process_id=process.id)
        try:
            logs = await process.get_logs()
            if logs.stdout:
                self.log.debug("gateway.stdout", process_id=process.id, output=logs.stdout)
            if logs.stderr:
                self.log.debug("gateway.stderr", process_id=process.id, output=logs.stderr)
        except Exception as e:
            self.log.debug("gateway.logs_error", process_id=process.id, exc=e)

        await self.check_health()

    async def check_health(self) -> int | None:
        """
        Hit the gateway's health endpoint for diagnostics only.

        Returns the HTTP status, or None if the request failed. The result
        never affects the handle returned to callers.
        """
        try:
            resp = await asyncio.wait_for(
                self.sandbox.container_fetch(config.HEALTH_PATH, self.port),
                timeout=config.HEALTH_CHECK_TIMEOUT_S,
            )
        except Exception as e:
            self.log.warn("gateway.health_check_failed", exc=e)
            return None

        self.log.info("gateway.health_check", status_code=resp.status_code)
        return resp.status_code

    async def kill_all(self) -> None:
        """Tear down every process in the sandbox. Never raises."""
        async with self._slot_lock:
            await self.teardown.kill_all()

    async def stop_for_restart(self) -> str | None:
        """
        First half of a restart: note the current gateway, then tear down.

        Returns the id of the gateway that was running, if any.
        """
        existing = await self.directory.find_existing_candidate()
        previous_id = existing.id if existing else None
        self.log.info("gateway.restart", previous_process_id=previous_id)

        await self.kill_all()
        return previous_id

    async def restart(self) -> RestartResult:
        """Kill all gateway processes and launch a fresh one."""
        previous_id = await self.stop_for_restart()
        handle = await self.ensure_gateway()
        return RestartResult(previous_process_id=previous_id, handle=handle)
