"""Supervisor for a single long-lived gateway process inside a sandbox."""

from .config import GatewayEnv
from .errors import StartupFailed
from .gateway.supervisor import GatewaySupervisor
from .types import CandidateKind, GatewayHandle, ProbeResult

__all__ = [
    "CandidateKind",
    "GatewayEnv",
    "GatewayHandle",
    "GatewaySupervisor",
    "ProbeResult",
    "StartupFailed",
]
