"""
Storage mounter - attach the durable bucket at a fixed path, once.

The mount table is the authoritative signal: the host sometimes reports a
mount failure even though the bucket ended up mounted.
"""

import asyncio

from .. import config
from ..config import GatewayEnv
from ..log_config import get_logger
from ..types import MountStatus, Sandbox, StorageStatus
from .utils import wait_for_process


class StorageMounter:
    """Idempotent bucket mount plus storage status reporting."""

    def __init__(
        self,
        sandbox: Sandbox,
        env: GatewayEnv,
        mount_path: str = config.R2_MOUNT_PATH,
    ):
        self.sandbox = sandbox
        self.env = env
        self.mount_path = mount_path
        self.log = get_logger("storage", service="gateway", mount_path=mount_path)
        self._inflight: asyncio.Task[MountStatus] | None = None

    async def is_mounted(self) -> bool:
        """Check the mount table for the bucket's s3fs entry."""
        try:
            proc = await self.sandbox.start_process(f'mount | grep "s3fs on {self.mount_path}"')
            await wait_for_process(proc, config.MOUNT_CHECK_TIMEOUT_MS)
            logs = await proc.get_logs()
        except Exception as e:
            self.log.warn("mount.check_error", exc=e)
            return False

        mounted = "s3fs" in (logs.stdout or "")
        self.log.debug("mount.check", mounted=mounted, stdout=(logs.stdout or "")[:100])
        return mounted

    async def _mount(self) -> MountStatus:
        if await self.is_mounted():
            self.log.info("mount.already_mounted")
            return MountStatus.ALREADY_MOUNTED

        if not self.env.has_r2_credentials:
            self.log.info(
                "mount.skip",
                reason="not_configured",
                missing=self.env.missing_r2_credentials(),
            )
            return MountStatus.NOT_CONFIGURED

        bucket = self.env.bucket_name
        self.log.info("mount.start", bucket=bucket)
        try:
            await self.sandbox.mount_bucket(
                bucket,
                self.mount_path,
                endpoint=self.env.r2_endpoint,
                access_key_id=self.env.r2_access_key_id or "",
                secret_access_key=self.env.r2_secret_access_key or "",
            )
        except Exception as e:
            self.log.warn("mount.error", bucket=bucket, exc=e)
            if await self.is_mounted():
                self.log.info("mount.mounted_despite_error", bucket=bucket)
                return MountStatus.MOUNTED_DESPITE_ERROR
            self.log.error("mount.failed", bucket=bucket)
            return MountStatus.FAILED

        self.log.info("mount.complete", bucket=bucket)
        return MountStatus.MOUNTED

    async def mount(self) -> MountStatus:
        """Mount the bucket unless already mounted. Concurrent callers share one attempt."""
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._mount())
        task = self._inflight
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight is task:
                self._inflight = None

    async def ensure_mounted(self) -> bool:
        """True when durable storage is available for this call."""
        status = await self.mount()
        return status.available

    async def read_last_sync(self) -> str | None:
        """Read the sync marker written by the backup routine."""
        marker = f"{self.mount_path}/{config.LAST_SYNC_MARKER}"
        try:
            proc = await self.sandbox.start_process(f'cat {marker} 2>/dev/null || echo ""')
            await wait_for_process(proc, 5_000)
            logs = await proc.get_logs()
        except Exception as e:
            self.log.debug("mount.last_sync_error", exc=e)
            return None
        return (logs.stdout or "").strip() or None

    async def storage_status(self) -> StorageStatus:
        """Report whether storage is configured and when it last synced."""
        missing = self.env.missing_r2_credentials()
        configured = not missing
        last_sync = None
        if configured and await self.ensure_mounted():
            last_sync = await self.read_last_sync()

        if configured:
            message = "Durable storage is configured. Gateway data will persist across restarts."
        else:
            message = (
                "Durable storage is not configured. Paired devices and conversations "
                "will be lost when the sandbox restarts."
            )
        return StorageStatus(
            configured=configured,
            missing=missing,
            last_sync=last_sync,
            message=message,
        )
