"""Tests for the host-backed sandbox."""

import asyncio
import re

import pytest

from gateway_supervisor.errors import SandboxTimeoutError
from gateway_supervisor.gateway.directory import parse_process_timestamp
from gateway_supervisor.gateway.utils import wait_for_process
from gateway_supervisor.sandbox.local import LocalSandbox, new_process_id


@pytest.fixture
def local() -> LocalSandbox:
    return LocalSandbox()


def test_process_id_carries_creation_time():
    process_id = new_process_id()

    assert re.fullmatch(r"proc_\d+_[0-9a-f]{8}", process_id)
    assert parse_process_timestamp(process_id) > 0


class TestLocalProcess:
    @pytest.mark.asyncio
    async def test_captures_output(self, local: LocalSandbox):
        proc = await local.start_process("echo out; echo err >&2")

        assert await wait_for_process(proc, 5000)
        logs = await proc.get_logs()

        assert proc.status == "completed"
        assert proc.exit_code == 0
        assert logs.stdout == "out\n"
        assert logs.stderr == "err\n"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_error(self, local: LocalSandbox):
        proc = await local.start_process("exit 3")

        assert await wait_for_process(proc, 5000)

        assert proc.status == "error"
        assert proc.exit_code == 3

    @pytest.mark.asyncio
    async def test_kill(self, local: LocalSandbox):
        proc = await local.start_process("exec sleep 30")
        assert proc.status == "running"

        await proc.kill()

        assert proc.status == "killed"
        assert [p.id for p in await local.list_processes()] == [proc.id]

    @pytest.mark.asyncio
    async def test_wait_for_port_succeeds_once_listening(self, local: LocalSandbox):
        async def handle(reader, writer):
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        proc = await local.start_process("exec sleep 30")
        try:
            await proc.wait_for_port(port, 2000)
        finally:
            await proc.kill()
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_wait_for_port_times_out(self, local: LocalSandbox):
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        proc = await local.start_process("exec sleep 30")
        try:
            with pytest.raises(SandboxTimeoutError):
                await proc.wait_for_port(port, 100)
        finally:
            await proc.kill()


class TestProcessTable:
    @pytest.mark.asyncio
    async def test_finished_processes_are_bounded(self):
        local = LocalSandbox(keep_finished=5)
        started = []
        for _ in range(20):
            proc = await local.start_process("true")
            assert await wait_for_process(proc, 5000)
            started.append(proc)

        tracked = await local.list_processes()

        assert [p.id for p in tracked] == [p.id for p in started[-5:]]

    @pytest.mark.asyncio
    async def test_active_processes_are_never_dropped(self):
        local = LocalSandbox(keep_finished=2)
        long_running = await local.start_process("exec sleep 30")
        try:
            for _ in range(5):
                proc = await local.start_process("true")
                assert await wait_for_process(proc, 5000)

            tracked = await local.list_processes()

            assert tracked[0] is long_running
            assert len(tracked) == 3
        finally:
            await long_running.kill()
