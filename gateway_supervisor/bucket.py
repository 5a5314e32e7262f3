"""S3-compatible bucket store for the durable secrets blob (R2 via its S3 API)."""

import aioboto3
from botocore.exceptions import ClientError

from .config import GatewayEnv
from .log_config import get_logger


class S3BucketStore:
    """Put/get text blobs in one bucket."""

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        region: str = "auto",
    ):
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self._session = aioboto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )
        self.log = get_logger("bucket", service="storage", bucket=bucket_name)

    @classmethod
    def from_env(cls, env: GatewayEnv) -> "S3BucketStore | None":
        """Build a store from bucket credentials, or None when they're not set."""
        if not env.has_r2_credentials:
            return None
        return cls(
            bucket_name=env.bucket_name,
            endpoint_url=env.r2_endpoint,
            access_key_id=env.r2_access_key_id or "",
            secret_access_key=env.r2_secret_access_key or "",
        )

    async def _get_client(self):
        """Get an S3 client context manager."""
        return self._session.client("s3", endpoint_url=self.endpoint_url)

    async def put(self, key: str, blob: str, content_type: str = "text/plain") -> None:
        async with await self._get_client() as s3:
            await s3.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=blob.encode(),
                ContentType=content_type,
            )
        self.log.debug("bucket.put", key=key, size=len(blob))

    async def get(self, key: str) -> str | None:
        async with await self._get_client() as s3:
            try:
                response = await s3.get_object(Bucket=self.bucket_name, Key=key)
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                    return None
                raise
            data = await response["Body"].read()
        return data.decode()
