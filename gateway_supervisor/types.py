"""Type definitions for the gateway supervisor and the sandbox it drives."""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Protocol

import httpx


class ProcessStatus(str, Enum):
    """Process status as reported by the sandbox."""

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    KILLED = "killed"
    ERROR = "error"
    EXITED = "exited"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({ProcessStatus.STARTING.value, ProcessStatus.RUNNING.value})


def status_name(status: str) -> str:
    """Plain status string, whether the host reports a ProcessStatus or any other string."""
    return str(getattr(status, "value", status))


def is_active(status: str) -> bool:
    """True while the sandbox reports the process as starting or running."""
    return status_name(status) in ACTIVE_STATUSES


class CandidateKind(str, Enum):
    """What a process is, judged from its command line alone."""

    PRIMARY_GATEWAY = "primary_gateway"
    LEGACY_BROKEN_WRAPPER = "legacy_broken_wrapper"
    ADMIN_CLI_INVOCATION = "admin_cli_invocation"
    UNRELATED = "unrelated"


class ProbeResult(str, Enum):
    """Outcome of a liveness probe."""

    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


class ProbeReport(NamedTuple):
    """Probe outcome and whether the cold-start wait was needed."""

    result: ProbeResult
    extended: bool = False
    age_ms: int | None = None

    @property
    def reachable(self) -> bool:
        return self.result is ProbeResult.REACHABLE


class MountStatus(str, Enum):
    """Outcome of a storage mount attempt."""

    ALREADY_MOUNTED = "already_mounted"
    MOUNTED = "mounted"
    MOUNTED_DESPITE_ERROR = "mounted_despite_error"
    NOT_CONFIGURED = "not_configured"
    FAILED = "failed"

    @property
    def available(self) -> bool:
        return self in (
            MountStatus.ALREADY_MOUNTED,
            MountStatus.MOUNTED,
            MountStatus.MOUNTED_DESPITE_ERROR,
        )


class ProcessLogs(NamedTuple):
    """Captured output of a sandbox process."""

    stdout: str
    stderr: str


class SandboxProcess(Protocol):
    """A process snapshot owned by the sandbox."""

    id: str
    command: str
    status: str
    exit_code: int | None

    async def kill(self) -> None: ...

    async def get_logs(self) -> ProcessLogs: ...

    async def wait_for_port(self, port: int, timeout_ms: int) -> None:
        """Return once the port accepts TCP connections; raise on timeout."""
        ...


class Sandbox(Protocol):
    """Process, mount and fetch operations exposed by the host sandbox."""

    async def list_processes(self) -> list[SandboxProcess]: ...

    async def start_process(self, command: str) -> SandboxProcess: ...

    async def mount_bucket(
        self,
        bucket: str,
        path: str,
        *,
        endpoint: str,
        access_key_id: str,
        secret_access_key: str,
    ) -> None: ...

    async def container_fetch(self, path: str, port: int) -> httpx.Response: ...


class BucketStore(Protocol):
    """Durable key-value blob storage."""

    async def put(self, key: str, blob: str, content_type: str = "text/plain") -> None: ...

    async def get(self, key: str) -> str | None: ...


class SecretWriteResult(NamedTuple):
    """What the secret materializer managed to write."""

    count: int
    local_written: bool
    durable_written: bool

    @property
    def materialized(self) -> bool:
        return self.count > 0 and self.local_written


class CliResult(NamedTuple):
    """Result of a one-shot gateway CLI invocation."""

    exit_code: int | None
    stdout: str
    stderr: str


class StorageStatus(NamedTuple):
    """Durable storage configuration and sync state."""

    configured: bool
    missing: list[str]
    last_sync: str | None
    message: str


@dataclass
class GatewayHandle:
    """A gateway process confirmed reachable on ``port``."""

    process: SandboxProcess
    port: int
    reused: bool

    @property
    def process_id(self) -> str:
        return self.process.id


@dataclass
class RestartResult:
    """Outcome of a forced gateway restart."""

    previous_process_id: str | None
    handle: GatewayHandle
