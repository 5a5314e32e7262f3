"""Exceptions raised by the gateway supervisor and its sandbox adapters."""


class GatewayError(Exception):
    """Base class for supervisor errors."""

    pass


class SandboxError(GatewayError):
    """A sandbox operation (list, start, kill, mount) failed."""

    pass


class SandboxTimeoutError(SandboxError):
    """A port or process wait ran past its timeout."""

    pass


class StartupFailed(GatewayError):
    """The gateway did not become reachable after a fresh launch.

    Carries the launched process's captured output so callers can surface it
    without separate log access.
    """

    def __init__(
        self,
        message: str,
        process_id: str | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.process_id = process_id
        self.stdout = stdout
        self.stderr = stderr

    @property
    def detail(self) -> str:
        return self.stderr or self.stdout or "(empty)"


class AuthConfigurationError(GatewayError):
    """Admin authentication is required but not configured."""

    pass


class CliOutputError(GatewayError):
    """A gateway CLI command produced output that could not be parsed."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw
