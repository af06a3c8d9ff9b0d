"""
Authentication dependencies for gateway endpoints.

This module provides dependency injection functions for authentication and
role-based authorization in FastAPI endpoints.
"""

from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..auth_utils import decode_access_token
from ..exceptions import AuthenticationError, AuthorizationError, ErrorContext
from .principal import Principal, principal_from_claims

_bearer = HTTPBearer(auto_error=False)


def authenticate_token(token: str | None, request_or_app: Any) -> Principal:
    """
    Verify a bearer token against the application's auth config.

    Raises:
        AuthenticationError: If the token is missing or invalid
    """
    container = request_or_app.state.container
    claims = decode_access_token(token, container.config.auth)
    if claims is None:
        raise AuthenticationError("Invalid or missing bearer token", user_friendly="Authentication required")
    principal = principal_from_claims(claims)
    if principal is None:
        raise AuthenticationError("Token carries no user id", user_friendly="Authentication required")
    return principal


async def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Principal:
    """Resolve the caller from the Authorization header."""
    token = credentials.credentials if credentials else None
    return authenticate_token(token, request.app)


def require_roles(*roles: str) -> Callable[..., Coroutine[Any, Any, Principal]]:
    """
    Build a dependency that admits only callers holding one of `roles`.

    With no roles given, the configured admin role is required.
    """

    async def dependency(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        allowed = set(roles) or {request.app.state.container.config.auth.admin_role}
        if not principal.has_any_role(allowed):
            raise AuthorizationError(
                "Insufficient role for this action",
                ErrorContext(user_id=principal.user_id),
                required_role=",".join(sorted(allowed)),
                user_friendly="You do not have permission to perform this action",
            )
        return principal

    return dependency


__all__ = ["authenticate_token", "get_current_principal", "require_roles"]
