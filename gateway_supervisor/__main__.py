"""
Run the gateway supervisor on the local host.

Ensures the gateway is up, then re-checks it on an interval so a crashed or
wedged gateway is reclaimed and relaunched. Stops on SIGTERM/SIGINT.

    python -m gateway_supervisor --check-interval 30
"""

import argparse
import asyncio
import signal

from .bucket import S3BucketStore
from .config import GATEWAY_PORT, GatewayEnv
from .errors import StartupFailed
from .gateway.supervisor import GatewaySupervisor
from .log_config import configure_logging, get_logger
from .sandbox.local import LocalSandbox

configure_logging()
log = get_logger("main", service="gateway")

MAX_CONSECUTIVE_FAILURES = 5


async def supervise(supervisor: GatewaySupervisor, interval: float, shutdown: asyncio.Event) -> int:
    """Keep the gateway healthy until shutdown. Returns a process exit code."""
    failures = 0
    while not shutdown.is_set():
        try:
            handle = await supervisor.ensure_gateway()
            failures = 0
            log.debug("main.gateway_ok", process_id=handle.process_id, reused=handle.reused)
        except StartupFailed as e:
            failures += 1
            log.error("main.startup_failed", exc=e, output=e.detail, failures=failures)
            if failures >= MAX_CONSECUTIVE_FAILURES:
                log.error("main.giving_up", failures=failures)
                return 1

        try:
            await asyncio.wait_for(shutdown.wait(), timeout=interval)
        except TimeoutError:
            pass
    return 0


async def main() -> int:
    """Entry point for the local supervisor."""
    parser = argparse.ArgumentParser(description="Gateway process supervisor")
    parser.add_argument("--port", type=int, default=GATEWAY_PORT, help="Gateway port")
    parser.add_argument(
        "--check-interval",
        type=float,
        default=30.0,
        help="Seconds between health re-checks",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Ensure the gateway once and exit, leaving it running",
    )
    args = parser.parse_args()

    env = GatewayEnv.from_environ()
    sandbox = LocalSandbox()
    supervisor = GatewaySupervisor(
        sandbox,
        env,
        bucket=S3BucketStore.from_env(env),
        port=args.port,
    )

    if args.once:
        try:
            handle = await supervisor.ensure_gateway()
        except StartupFailed as e:
            log.error("main.startup_failed", exc=e, output=e.detail)
            return 1
        log.info("main.gateway_ready", process_id=handle.process_id, reused=handle.reused)
        return 0

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    exit_code = await supervise(supervisor, args.check_interval, shutdown)
    log.info("main.shutdown")
    await supervisor.kill_all()
    return exit_code


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
