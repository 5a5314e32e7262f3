"""
Secret materializer - hand secrets to the gateway through a sourced file.

The sandbox doesn't reliably pass environment variables to the processes it
starts, so secrets are written as a shell script the start command sources.
A copy goes to the bucket so a restarted sandbox can recover them once
storage is remounted.
"""

import shlex

from .. import config
from ..config import GatewayEnv
from ..log_config import get_logger
from ..types import BucketStore, Sandbox, SecretWriteResult
from .utils import wait_for_process

SecretSet = dict[str, str]

WRITE_PREFIX = "printf '%s' "

# Export name -> GatewayEnv field
SECRET_FIELDS: dict[str, str] = {
    "ANTHROPIC_API_KEY": "anthropic_api_key",
    "ANTHROPIC_BASE_URL": "anthropic_base_url",
    "OPENAI_API_KEY": "openai_api_key",
    "GROQ_API_KEY": "groq_api_key",
    "CLAWDBOT_GATEWAY_TOKEN": "gateway_token",
    "TELEGRAM_BOT_TOKEN": "telegram_bot_token",
    "TELEGRAM_DM_POLICY": "telegram_dm_policy",
    "DISCORD_BOT_TOKEN": "discord_bot_token",
    "DISCORD_DM_POLICY": "discord_dm_policy",
    "SLACK_BOT_TOKEN": "slack_bot_token",
    "SLACK_APP_TOKEN": "slack_app_token",
    "WHATSAPP_ENABLED": "whatsapp_enabled",
    "WHATSAPP_ALLOW_FROM": "whatsapp_allow_from",
    "WHATSAPP_CREDS_JSON": "whatsapp_creds_json",
}


def build_secret_set(env: GatewayEnv) -> SecretSet:
    """Collect the non-empty secrets the gateway process needs."""
    secrets: SecretSet = {}
    for name, field in SECRET_FIELDS.items():
        value = getattr(env, field)
        if value:
            secrets[name] = value
    if env.dev_mode:
        secrets["CLAWDBOT_DEV_MODE"] = "true"
    return secrets


def escape_single_quoted(value: str) -> str:
    """Make a value safe inside a single-quoted shell string."""
    return value.replace("'", "'\"'\"'")


def render_env_file(secrets: SecretSet) -> str:
    """Render secrets as ``export KEY='value'`` lines."""
    return "\n".join(
        f"export {key}='{escape_single_quoted(value)}'" for key, value in secrets.items()
    )


def write_command(content: str, path: str) -> str:
    return f"{WRITE_PREFIX}{shlex.quote(content)} > {path}"


def redact_command(command: str) -> str:
    """Hide the secrets carried by an env-file write before the command is shown."""
    if not command.startswith(WRITE_PREFIX) or " > " not in command:
        return command
    path = command.rsplit(" > ", 1)[1]
    return f"{WRITE_PREFIX}<redacted> > {path}"


class SecretMaterializer:
    """Writes the secrets script into the sandbox and to durable storage."""

    def __init__(
        self,
        sandbox: Sandbox,
        bucket: BucketStore | None = None,
        env_file_path: str = config.ENV_FILE_PATH,
        bucket_key: str = config.SECRETS_BUCKET_KEY,
    ):
        self.sandbox = sandbox
        self.bucket = bucket
        self.env_file_path = env_file_path
        self.bucket_key = bucket_key
        self.log = get_logger("secrets", service="gateway")

    async def write_local(self, content: str) -> bool:
        """Write the script to the ephemeral path inside the sandbox."""
        command = write_command(content, self.env_file_path)
        try:
            proc = await self.sandbox.start_process(command)
            finished = await wait_for_process(proc, config.ENV_WRITE_TIMEOUT_MS)
        except Exception as e:
            self.log.error("secrets.local_write_error", path=self.env_file_path, exc=e)
            return False

        if not finished:
            self.log.warn("secrets.local_write_slow", path=self.env_file_path)
        self.log.info("secrets.local_written", path=self.env_file_path)
        return True

    async def write_durable(self, content: str, count: int) -> bool:
        """Persist the script to the bucket for cross-restart recovery."""
        if self.bucket is None:
            self.log.info("secrets.durable_skip", reason="no_bucket")
            return False

        try:
            await self.bucket.put(self.bucket_key, content + "\n", content_type="text/plain")
        except Exception as e:
            self.log.error("secrets.durable_write_error", key=self.bucket_key, exc=e)
            return False

        self.log.info("secrets.durable_written", key=self.bucket_key, count=count)
        return True

    async def materialize(self, secrets: SecretSet) -> SecretWriteResult:
        """
        Write secrets to both targets. Never raises.

        An empty set writes nothing.
        """
        if not secrets:
            self.log.info("secrets.skip", reason="no_secrets")
            return SecretWriteResult(count=0, local_written=False, durable_written=False)

        content = render_env_file(secrets)
        local_written = await self.write_local(content)
        durable_written = await self.write_durable(content, len(secrets))
        return SecretWriteResult(
            count=len(secrets),
            local_written=local_written,
            durable_written=durable_written,
        )
