"""
Bearer token helpers.

Tokens are issued elsewhere; the gateway only verifies them. create_access_token
exists for operator tooling and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from .config.models import AuthConfig
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def create_access_token(
    data: dict[str, Any],
    auth_config: AuthConfig,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=auth_config.token_ttl_minutes))
    to_encode.update({"exp": expire})
    token = jwt.encode(to_encode, auth_config.jwt_secret, algorithm=auth_config.jwt_algorithm)
    logger.debug("Access token created", user_id=data.get("sub"))
    return token


def decode_access_token(token: str | None, auth_config: AuthConfig) -> dict[str, Any] | None:
    """
    Decode and validate a JWT access token.

    Returns:
        The claims, or None if the token is missing, malformed, expired or badly signed
    """
    if not token:
        logger.debug("No token provided for decoding")
        return None

    try:
        payload = jwt.decode(token, auth_config.jwt_secret, algorithms=[auth_config.jwt_algorithm])
    except JWTError as e:
        logger.warning("JWT decode error", error=str(e))
        return None
    if not isinstance(payload, dict):
        return None
    return payload
