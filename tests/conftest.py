"""Shared fixtures: in-memory sandbox, processes and bucket."""

from typing import Any

import httpx
import pytest

from gateway_supervisor import config
from gateway_supervisor.config import GatewayEnv
from gateway_supervisor.errors import SandboxTimeoutError
from gateway_supervisor.gateway.prober import LivenessProber
from gateway_supervisor.gateway.supervisor import GatewaySupervisor
from gateway_supervisor.gateway.teardown import Teardown
from gateway_supervisor.types import ProcessLogs

NOW_MS = 1_700_000_000_000


def is_gateway_launch(command: str) -> bool:
    return config.START_COMMAND in command


class FakeProcess:
    """Scriptable stand-in for a sandbox process."""

    def __init__(
        self,
        process_id: str,
        command: str,
        status: str = "running",
        reachable: bool | list[bool] = True,
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = None,
        events: list[tuple[str, str]] | None = None,
    ):
        self.id = process_id
        self.events = events if events is not None else []
        self.command = command
        self.status = status
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.reachable = reachable
        self.kill_error: Exception | None = None
        self.logs_error: Exception | None = None
        self.kill_calls = 0
        self.wait_for_port_calls: list[tuple[int, int]] = []

    async def kill(self) -> None:
        self.kill_calls += 1
        self.events.append(("kill", self.id))
        if self.kill_error:
            raise self.kill_error
        self.status = "killed"

    async def get_logs(self) -> ProcessLogs:
        if self.logs_error:
            raise self.logs_error
        return ProcessLogs(stdout=self.stdout, stderr=self.stderr)

    async def wait_for_port(self, port: int, timeout_ms: int) -> None:
        self.wait_for_port_calls.append((port, timeout_ms))
        if isinstance(self.reachable, list):
            ok = self.reachable.pop(0) if self.reachable else False
        else:
            ok = self.reachable
        if not ok:
            raise SandboxTimeoutError(f"Port {port} not reachable after {timeout_ms}ms")


class FakeSandbox:
    """In-memory sandbox recording every call made against it."""

    def __init__(self, now_ms: int = NOW_MS):
        self.now_ms = now_ms
        self.processes: list[FakeProcess] = []
        self.started: list[FakeProcess] = []
        self.events: list[tuple[str, str]] = []
        self._counter = 0

        self.list_error: Exception | None = None
        self.start_error: Exception | None = None
        self.launch_reachable: bool | list[bool] = True
        self.launch_stdout = ""
        self.launch_stderr = ""

        self.mounted = False
        self.mount_error: Exception | None = None
        self.mount_succeeds_despite_error = False
        self.mount_calls: list[dict[str, Any]] = []
        self.last_sync = ""
        # command prefix -> (stdout, exit code) for one-shot commands
        self.cli_outputs: dict[str, tuple[str, int]] = {}

        self.health_status = 200
        self.health_error: Exception | None = None
        self.health_calls: list[tuple[str, int]] = []

    def _next_id(self, created_ms: int | None = None) -> str:
        self._counter += 1
        ts = created_ms if created_ms is not None else self.now_ms + self._counter
        return f"proc_{ts}_{self._counter:04x}"

    def add_process(
        self,
        command: str,
        status: str = "running",
        created_ms: int | None = None,
        process_id: str | None = None,
        reachable: bool | list[bool] = True,
    ) -> FakeProcess:
        """Seed a pre-existing process."""
        proc = FakeProcess(
            process_id or self._next_id(created_ms),
            command,
            status=status,
            reachable=reachable,
            events=self.events,
        )
        self.processes.append(proc)
        return proc

    @property
    def launches(self) -> list[FakeProcess]:
        return [proc for proc in self.started if is_gateway_launch(proc.command)]

    async def list_processes(self) -> list[FakeProcess]:
        if self.list_error:
            raise self.list_error
        return list(self.processes)

    async def start_process(self, command: str) -> FakeProcess:
        if self.start_error and is_gateway_launch(command):
            raise self.start_error
        self.events.append(("start", command))

        if is_gateway_launch(command):
            proc = FakeProcess(
                self._next_id(),
                command,
                status="starting",
                reachable=self.launch_reachable,
                stdout=self.launch_stdout,
                stderr=self.launch_stderr,
                events=self.events,
            )
        else:
            stdout = ""
            exit_code = 0
            if command.startswith("mount |") and self.mounted:
                stdout = f"s3fs on {config.R2_MOUNT_PATH} type fuse.s3fs (rw)\n"
            elif command.startswith("cat ") and config.LAST_SYNC_MARKER in command:
                stdout = self.last_sync + "\n"
            for prefix, (output, code) in self.cli_outputs.items():
                if command.startswith(prefix):
                    stdout, exit_code = output, code
                    break
            proc = FakeProcess(
                self._next_id(),
                command,
                status="completed",
                stdout=stdout,
                exit_code=exit_code,
                events=self.events,
            )

        self.processes.append(proc)
        self.started.append(proc)
        return proc

    async def mount_bucket(
        self,
        bucket: str,
        path: str,
        *,
        endpoint: str,
        access_key_id: str,
        secret_access_key: str,
    ) -> None:
        self.mount_calls.append({"bucket": bucket, "path": path, "endpoint": endpoint})
        if self.mount_error:
            if self.mount_succeeds_despite_error:
                self.mounted = True
            raise self.mount_error
        self.mounted = True

    async def container_fetch(self, path: str, port: int) -> httpx.Response:
        self.health_calls.append((path, port))
        if self.health_error:
            raise self.health_error
        return httpx.Response(self.health_status)


class FakeBucket:
    """In-memory bucket store."""

    def __init__(self):
        self.objects: dict[str, str] = {}
        self.content_types: dict[str, str] = {}
        self.put_error: Exception | None = None

    async def put(self, key: str, blob: str, content_type: str = "text/plain") -> None:
        if self.put_error:
            raise self.put_error
        self.objects[key] = blob
        self.content_types[key] = content_type

    async def get(self, key: str) -> str | None:
        return self.objects.get(key)


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def sandbox() -> FakeSandbox:
    return FakeSandbox()


@pytest.fixture
def bucket() -> FakeBucket:
    return FakeBucket()


@pytest.fixture
def env() -> GatewayEnv:
    return GatewayEnv()


@pytest.fixture
def r2_env() -> GatewayEnv:
    return GatewayEnv(
        r2_access_key_id="key-id",
        r2_secret_access_key="secret",
        cf_account_id="acct123",
    )


def make_supervisor(
    sandbox: FakeSandbox,
    env: GatewayEnv,
    bucket: FakeBucket | None = None,
) -> GatewaySupervisor:
    """Supervisor with a frozen clock and instant teardown settles."""
    return GatewaySupervisor(
        sandbox,
        env,
        bucket,
        prober=LivenessProber(clock=lambda: sandbox.now_ms),
        teardown=Teardown(sandbox, sleep=no_sleep),
    )


@pytest.fixture
def supervisor(sandbox: FakeSandbox, env: GatewayEnv, bucket: FakeBucket) -> GatewaySupervisor:
    return make_supervisor(sandbox, env, bucket)
