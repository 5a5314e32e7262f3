"""
Liveness prober - decide whether a candidate gateway is accepting connections.

A quick port check covers the warm case. When it fails, only a recently
launched process gets the full cold-start budget; an old process that still
isn't listening is a zombie and is reported unreachable straight away.
"""

import time
from collections.abc import Callable

from .. import config
from ..log_config import get_logger
from ..types import ProbeReport, ProbeResult, SandboxProcess
from .directory import parse_process_timestamp


def _now_ms() -> int:
    return int(time.time() * 1000)


class LivenessProber:
    """Two-phase, age-aware port probe."""

    def __init__(
        self,
        fast_timeout_ms: int = config.FAST_PROBE_TIMEOUT_MS,
        extended_timeout_ms: int = config.STARTUP_TIMEOUT_MS,
        recent_threshold_ms: int = config.RECENT_THRESHOLD_MS,
        clock: Callable[[], int] = _now_ms,
    ):
        self.fast_timeout_ms = fast_timeout_ms
        self.extended_timeout_ms = extended_timeout_ms
        self.recent_threshold_ms = recent_threshold_ms
        self.clock = clock
        self.log = get_logger("prober", service="gateway")

    def age_ms(self, candidate: SandboxProcess) -> int:
        """Milliseconds since the candidate was created, per its id."""
        return self.clock() - parse_process_timestamp(candidate.id)

    async def _wait(self, candidate: SandboxProcess, port: int, timeout_ms: int) -> bool:
        try:
            await candidate.wait_for_port(port, timeout_ms)
            return True
        except Exception as e:
            self.log.debug(
                "probe.timeout",
                process_id=candidate.id,
                port=port,
                timeout_ms=timeout_ms,
                exc=e,
            )
            return False

    async def probe_fast(self, candidate: SandboxProcess, port: int) -> bool:
        return await self._wait(candidate, port, self.fast_timeout_ms)

    async def probe_extended(self, candidate: SandboxProcess, port: int) -> bool:
        return await self._wait(candidate, port, self.extended_timeout_ms)

    async def probe(self, candidate: SandboxProcess, port: int) -> ProbeReport:
        """
        Probe a candidate.

        Returns:
            ProbeReport whose result is REACHABLE if the port accepted
            connections within the allowed budget, UNREACHABLE otherwise
        """
        if await self.probe_fast(candidate, port):
            self.log.info("probe.reachable", process_id=candidate.id, phase="fast")
            return ProbeReport(ProbeResult.REACHABLE)

        age_ms = self.age_ms(candidate)
        if age_ms >= self.recent_threshold_ms:
            self.log.info("probe.zombie", process_id=candidate.id, age_ms=age_ms)
            return ProbeReport(ProbeResult.UNREACHABLE, age_ms=age_ms)

        self.log.info(
            "probe.extended_wait",
            process_id=candidate.id,
            age_ms=age_ms,
            timeout_ms=self.extended_timeout_ms,
        )
        if await self.probe_extended(candidate, port):
            self.log.info("probe.reachable", process_id=candidate.id, phase="extended")
            return ProbeReport(ProbeResult.REACHABLE, extended=True, age_ms=age_ms)

        self.log.info("probe.unreachable", process_id=candidate.id, age_ms=age_ms)
        return ProbeReport(ProbeResult.UNREACHABLE, extended=True, age_ms=age_ms)
