"""
Local sandbox - run the sandbox contract on this host with asyncio subprocesses.

Used when the supervisor runs inside the container itself rather than behind
a managed sandbox API. Process ids carry their creation time in the same
``proc_<epoch_ms>_<suffix>`` format as the hosted sandbox so the directory's
ordering and age logic apply unchanged.
"""

import asyncio
import os
import secrets
import tempfile
import time
from pathlib import Path

import httpx

from ..errors import SandboxError, SandboxTimeoutError
from ..log_config import get_logger
from ..types import ProcessLogs, ProcessStatus, is_active

PORT_POLL_INTERVAL_S = 0.5
CONNECT_TIMEOUT_S = 1.0
READER_DRAIN_TIMEOUT_S = 1.0
# Finished processes kept for listing and log inspection
KEEP_FINISHED = 10


def new_process_id() -> str:
    return f"proc_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class LocalProcess:
    """A shell command started by LocalSandbox, with captured output."""

    def __init__(self, process_id: str, command: str, process: asyncio.subprocess.Process):
        self.id = process_id
        self.command = command
        self._process = process
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._killed = False
        self._readers = [
            asyncio.create_task(self._capture(process.stdout, self._stdout)),
            asyncio.create_task(self._capture(process.stderr, self._stderr)),
        ]

    @staticmethod
    async def _capture(stream: asyncio.StreamReader | None, sink: list[str]) -> None:
        if stream is None:
            return
        async for line in stream:
            sink.append(line.decode(errors="replace"))

    @property
    def exit_code(self) -> int | None:
        return self._process.returncode

    @property
    def status(self) -> str:
        if self._killed:
            return ProcessStatus.KILLED.value
        if self._process.returncode is None:
            return ProcessStatus.RUNNING.value
        if self._process.returncode == 0:
            return ProcessStatus.COMPLETED.value
        return ProcessStatus.ERROR.value

    async def kill(self) -> None:
        if self._process.returncode is not None:
            return
        try:
            self._process.kill()
        except ProcessLookupError:
            return
        self._killed = True
        await self._process.wait()

    async def get_logs(self) -> ProcessLogs:
        if self._process.returncode is not None:
            await asyncio.wait(self._readers, timeout=READER_DRAIN_TIMEOUT_S)
        return ProcessLogs(stdout="".join(self._stdout), stderr="".join(self._stderr))

    async def wait_for_port(self, port: int, timeout_ms: int) -> None:
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            try:
                _reader, writer = await asyncio.wait_for(
                    asyncio.open_connection("127.0.0.1", port),
                    timeout=CONNECT_TIMEOUT_S,
                )
            except (OSError, TimeoutError):
                if time.monotonic() >= deadline:
                    raise SandboxTimeoutError(
                        f"Port {port} not reachable after {timeout_ms}ms"
                    ) from None
                await asyncio.sleep(PORT_POLL_INTERVAL_S)
                continue

            writer.close()
            await writer.wait_closed()
            return


class LocalSandbox:
    """Sandbox contract backed by the local host."""

    def __init__(self, health_host: str = "localhost", keep_finished: int = KEEP_FINISHED):
        self.health_host = health_host
        self.keep_finished = keep_finished
        self._processes: dict[str, LocalProcess] = {}
        self.log = get_logger("local_sandbox", service="sandbox")

    async def list_processes(self) -> list[LocalProcess]:
        self._prune()
        return list(self._processes.values())

    def _prune(self) -> None:
        """Forget all but the newest finished processes. Active ones are always kept."""
        finished = [pid for pid, proc in self._processes.items() if not is_active(proc.status)]
        excess = len(finished) - self.keep_finished
        for pid in finished[: max(excess, 0)]:
            del self._processes[pid]

    async def start_process(self, command: str) -> LocalProcess:
        process_id = new_process_id()
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise SandboxError(f"Failed to start process: {e}") from e

        proc = LocalProcess(process_id, command, process)
        self._prune()
        self._processes[process_id] = proc
        self.log.debug("process.start", process_id=process_id, pid=process.pid)
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
        """Mount a bucket with s3fs."""
        Path(path).mkdir(parents=True, exist_ok=True)

        # Credentials file must not be world-readable or s3fs refuses it.
        passwd_dir = Path(tempfile.gettempdir())
        passwd_file = passwd_dir / f".passwd-s3fs-{bucket}"
        fd = os.open(str(passwd_file), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            os.write(fd, f"{access_key_id}:{secret_access_key}".encode())
        finally:
            os.close(fd)

        try:
            process = await asyncio.create_subprocess_exec(
                "s3fs",
                bucket,
                path,
                "-o",
                f"passwd_file={passwd_file}",
                "-o",
                f"url={endpoint}",
                "-o",
                "use_path_request_style",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SandboxError(f"Failed to run s3fs: {e}") from e
        _stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise SandboxError(
                f"s3fs exited with {process.returncode}: {stderr.decode(errors='replace')}"
            )

    async def container_fetch(self, path: str, port: int) -> httpx.Response:
        async with httpx.AsyncClient() as client:
            return await client.get(f"http://{self.health_host}:{port}{path}", timeout=5.0)
