"""
Supervisor configuration.

Constants describe the gateway's fixed contract inside the sandbox (start
command, port, well-known paths). GatewayEnv holds the worker bindings that
vary per deployment and is loaded from environment variables.
"""

import os

from pydantic import BaseModel

# Gateway process contract
GATEWAY_PORT = 18789
GATEWAY_CLI = "clawdbot"
START_COMMAND = "/usr/local/bin/start-moltbot.sh"
START_SCRIPT_NAME = "start-moltbot"
HEALTH_PATH = "/health"

# Secrets channel
ENV_FILE_PATH = "/tmp/moltbot-env.sh"
SECRETS_BUCKET_KEY = "secrets.env"

# Durable storage
R2_MOUNT_PATH = "/data/moltbot"
R2_DEFAULT_BUCKET = "moltbot-data"
LAST_SYNC_MARKER = ".last-sync"

# Artifacts that can block a fresh launch
STALE_ARTIFACTS = (
    "/tmp/clawdbot-gateway.lock",
    "/root/.clawdbot/gateway.lock",
    ENV_FILE_PATH,
)

# Timeouts (milliseconds)
FAST_PROBE_TIMEOUT_MS = 5_000
STARTUP_TIMEOUT_MS = 90_000
RECENT_THRESHOLD_MS = 120_000
ENV_WRITE_TIMEOUT_MS = 5_000
MOUNT_CHECK_TIMEOUT_MS = 2_000
CLI_TIMEOUT_MS = 20_000
CLI_LONG_TIMEOUT_MS = 30_000
HEALTH_CHECK_TIMEOUT_S = 5.0

# Teardown settle times (seconds)
PKILL_SETTLE_S = 1.0
CLEANUP_SETTLE_S = 0.5
PORT_RELEASE_SETTLE_S = 2.0


def _env(name: str) -> str | None:
    value = os.environ.get(name)
    return value if value else None


class GatewayEnv(BaseModel):
    """Worker bindings: credentials, channel tokens and storage settings."""

    # Model providers
    anthropic_api_key: str | None = None
    anthropic_base_url: str | None = None
    openai_api_key: str | None = None
    groq_api_key: str | None = None

    # Gateway
    gateway_token: str | None = None
    dev_mode: bool = False
    admin_token: str | None = None

    # Channels
    telegram_bot_token: str | None = None
    telegram_dm_policy: str | None = None
    discord_bot_token: str | None = None
    discord_dm_policy: str | None = None
    slack_bot_token: str | None = None
    slack_app_token: str | None = None
    whatsapp_enabled: str | None = None
    whatsapp_allow_from: str | None = None
    whatsapp_creds_json: str | None = None

    # Durable storage (R2 via S3 API)
    r2_access_key_id: str | None = None
    r2_secret_access_key: str | None = None
    cf_account_id: str | None = None
    r2_bucket_name: str | None = None

    @classmethod
    def from_environ(cls) -> "GatewayEnv":
        """Build bindings from the process environment."""
        return cls(
            anthropic_api_key=_env("ANTHROPIC_API_KEY"),
            anthropic_base_url=_env("ANTHROPIC_BASE_URL"),
            openai_api_key=_env("OPENAI_API_KEY"),
            groq_api_key=_env("GROQ_API_KEY"),
            gateway_token=_env("MOLTBOT_GATEWAY_TOKEN"),
            dev_mode=os.environ.get("DEV_MODE") == "true",
            admin_token=_env("ADMIN_TOKEN"),
            telegram_bot_token=_env("TELEGRAM_BOT_TOKEN"),
            telegram_dm_policy=_env("TELEGRAM_DM_POLICY"),
            discord_bot_token=_env("DISCORD_BOT_TOKEN"),
            discord_dm_policy=_env("DISCORD_DM_POLICY"),
            slack_bot_token=_env("SLACK_BOT_TOKEN"),
            slack_app_token=_env("SLACK_APP_TOKEN"),
            whatsapp_enabled=_env("WHATSAPP_ENABLED"),
            whatsapp_allow_from=_env("WHATSAPP_ALLOW_FROM"),
            whatsapp_creds_json=_env("WHATSAPP_CREDS_JSON"),
            r2_access_key_id=_env("R2_ACCESS_KEY_ID"),
            r2_secret_access_key=_env("R2_SECRET_ACCESS_KEY"),
            cf_account_id=_env("CF_ACCOUNT_ID"),
            r2_bucket_name=_env("R2_BUCKET_NAME"),
        )

    @property
    def bucket_name(self) -> str:
        return self.r2_bucket_name or R2_DEFAULT_BUCKET

    @property
    def r2_endpoint(self) -> str:
        return f"https://{self.cf_account_id}.r2.cloudflarestorage.com"

    def missing_r2_credentials(self) -> list[str]:
        """Names of the bucket credentials that are not set."""
        missing = []
        if not self.r2_access_key_id:
            missing.append("R2_ACCESS_KEY_ID")
        if not self.r2_secret_access_key:
            missing.append("R2_SECRET_ACCESS_KEY")
        if not self.cf_account_id:
            missing.append("CF_ACCOUNT_ID")
        return missing

    @property
    def has_r2_credentials(self) -> bool:
        return not self.missing_r2_credentials()
