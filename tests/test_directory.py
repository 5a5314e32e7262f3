"""Tests for process discovery, classification and ordering."""

import pytest

from gateway_supervisor.errors import SandboxError
from gateway_supervisor.gateway.directory import (
    ProcessDirectory,
    classify_command,
    parse_process_timestamp,
)
from gateway_supervisor.types import CandidateKind
from tests.conftest import FakeSandbox

WRAPPED = "bash -c '. /tmp/moltbot-env.sh; /usr/local/bin/start-moltbot.sh'"
LEGACY = "bash -c 'source /tmp/moltbot-env.sh; /usr/local/bin/start-moltbot.sh'"


class TestParseProcessTimestamp:
    """The id format is the host's wire contract."""

    def test_extracts_timestamp(self):
        assert parse_process_timestamp("proc_1700000000123_abc") == 1700000000123

    def test_unparseable_ids_are_oldest(self):
        assert parse_process_timestamp("proc-abc") == 0
        assert parse_process_timestamp("") == 0
        assert parse_process_timestamp("proc_notanumber_x") == 0

    def test_requires_trailing_separator(self):
        assert parse_process_timestamp("proc_123") == 0


class TestClassifyCommand:
    @pytest.mark.parametrize(
        "command",
        [
            "/usr/local/bin/start-moltbot.sh",
            WRAPPED,
            "clawdbot gateway --port 18789",
            "node /usr/lib/node_modules/clawdbot gateway",
        ],
    )
    def test_primary_gateway(self, command: str):
        assert classify_command(command) is CandidateKind.PRIMARY_GATEWAY

    @pytest.mark.parametrize(
        "command",
        [
            LEGACY,
            "source /tmp/moltbot-env.sh && clawdbot gateway",
            "source /tmp/moltbot-env.sh; . /tmp/moltbot-env.sh; /usr/local/bin/start-moltbot.sh",
        ],
    )
    def test_legacy_wrapper_is_never_primary(self, command: str):
        assert classify_command(command) is CandidateKind.LEGACY_BROKEN_WRAPPER

    @pytest.mark.parametrize(
        "command",
        [
            "clawdbot devices list --json --url ws://localhost:18789",
            "clawdbot --version",
            "bash -c '. /tmp/moltbot-env.sh; clawdbot devices approve abc'",
        ],
    )
    def test_admin_cli(self, command: str):
        assert classify_command(command) is CandidateKind.ADMIN_CLI_INVOCATION

    @pytest.mark.parametrize(
        "command",
        [
            "pkill -9 -f clawdbot || pkill -9 -f start-moltbot || true",
            "rm -f /tmp/clawdbot-gateway.lock /tmp/moltbot-env.sh",
            'mount | grep "s3fs on /data/moltbot"',
            "/usr/local/bin/start-moltbot.sh --dry-run",
            "echo hello",
        ],
    )
    def test_unrelated(self, command: str):
        assert classify_command(command) is CandidateKind.UNRELATED


class TestProcessDirectory:
    @pytest.mark.asyncio
    async def test_lists_newest_first(self, sandbox: FakeSandbox):
        sandbox.add_process("echo a", created_ms=1000)
        sandbox.add_process("echo c", created_ms=3000)
        sandbox.add_process("echo x", process_id="weird-id")
        sandbox.add_process("echo b", created_ms=2000)

        listing = await ProcessDirectory(sandbox).list_candidates()

        assert [proc.command for proc, _ in listing] == ["echo c", "echo b", "echo a", "echo x"]
        assert all(kind is CandidateKind.UNRELATED for _, kind in listing)

    @pytest.mark.asyncio
    async def test_selects_newest_running_gateway(self, sandbox: FakeSandbox):
        sandbox.add_process(WRAPPED, created_ms=1000)
        newest = sandbox.add_process(WRAPPED, created_ms=3000)
        sandbox.add_process(WRAPPED, created_ms=2000)

        found = await ProcessDirectory(sandbox).find_existing_candidate()

        assert found is newest

    @pytest.mark.asyncio
    async def test_skips_finished_processes(self, sandbox: FakeSandbox):
        older = sandbox.add_process(WRAPPED, created_ms=1000, status="starting")
        sandbox.add_process(WRAPPED, created_ms=2000, status="completed")
        sandbox.add_process(WRAPPED, created_ms=3000, status="killed")

        found = await ProcessDirectory(sandbox).find_existing_candidate()

        assert found is older

    @pytest.mark.asyncio
    async def test_skips_legacy_and_cli_processes(self, sandbox: FakeSandbox):
        sandbox.add_process(LEGACY, created_ms=3000)
        sandbox.add_process("clawdbot devices list --json", created_ms=2000)

        assert await ProcessDirectory(sandbox).find_existing_candidate() is None

    @pytest.mark.asyncio
    async def test_list_failure_means_no_candidate(self, sandbox: FakeSandbox):
        sandbox.add_process(WRAPPED)
        sandbox.list_error = SandboxError("list failed")

        directory = ProcessDirectory(sandbox)

        assert await directory.list_candidates() == []
        assert await directory.find_existing_candidate() is None

    @pytest.mark.asyncio
    async def test_latest_gateway_process_ignores_status(self, sandbox: FakeSandbox):
        sandbox.add_process(WRAPPED, created_ms=1000, status="running")
        crashed = sandbox.add_process(WRAPPED, created_ms=2000, status="error")
        sandbox.add_process("echo newer", created_ms=3000)

        found = await ProcessDirectory(sandbox).find_latest_gateway_process()

        assert found is crashed
