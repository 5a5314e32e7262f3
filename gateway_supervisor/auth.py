"""
Admin API authentication.

Admin routes take ``Authorization: Bearer <ADMIN_TOKEN>``. Dev mode skips the
check; a deployment that is neither in dev mode nor configured with a token
is misconfigured rather than open.
"""

import hmac

from .config import GatewayEnv
from .errors import AuthConfigurationError


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_admin_token(authorization: str | None, env: GatewayEnv) -> bool:
    """
    Check an Authorization header against the configured admin token.

    Raises:
        AuthConfigurationError: if no admin token is configured outside dev mode
    """
    if env.dev_mode:
        return True
    if not env.admin_token:
        raise AuthConfigurationError("ADMIN_TOKEN is not set")

    token = extract_bearer_token(authorization)
    if token is None:
        return False
    return hmac.compare_digest(token.encode(), env.admin_token.encode())
