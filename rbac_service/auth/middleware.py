"""
Authentication middleware.

This module provides request gates for:
- Authentication: a valid access token in the Authorization header
- Role-based access control against a per-route allow-list

Gates are FastAPI dependencies. A failing gate raises, so the route
handler never runs. Clients always get the same 401/403 body; the exact
reason is only logged.
"""
import logging
from typing import AbstractSet, Iterable, Optional

from fastapi import Depends, Request
from pydantic import BaseModel

from rbac_service.auth.exceptions import Forbidden, MalformedToken, TokenError, Unauthorized
from rbac_service.auth.jwt import TokenPurpose, TokenValidator, get_token_validator
from rbac_service.auth.users import ROLE_ADMIN, ROLE_MANAGER

logger = logging.getLogger("rbac_service.auth")

ADMIN_ROLES = frozenset({ROLE_ADMIN})
MANAGER_ROLES = frozenset({ROLE_ADMIN, ROLE_MANAGER})


class AuthenticatedUser(BaseModel):
    """Identity injected into the request by the authentication gate."""
    user_id: int
    email: str
    role: str


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an ``Authorization: Bearer <token>`` header.

    Raises:
        MalformedToken: If the header is missing or not a bearer credential
    """
    if not authorization:
        raise MalformedToken("Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise MalformedToken("Malformed Authorization header")
    return parts[1]


async def get_current_user(
    request: Request,
    validator: TokenValidator = Depends(get_token_validator),
) -> AuthenticatedUser:
    """
    FastAPI dependency to get the current authenticated user from the access token.

    Returns:
        The authenticated identity, also stored on ``request.state.user``

    Raises:
        Unauthorized: On a missing/malformed header or any token rejection
    """
    try:
        token = extract_bearer_token(request.headers.get("Authorization"))
        claims = validator.parse_and_verify(token, TokenPurpose.ACCESS)
    except TokenError as exc:
        logger.warning(
            "Authentication rejected for %s %s: %s",
            request.method, request.url.path, exc.__class__.__name__,
        )
        raise Unauthorized() from exc

    user = AuthenticatedUser(user_id=claims.user_id, email=claims.email, role=claims.role)
    request.state.user = user
    return user


def allowed(role: Optional[str], required_roles: AbstractSet[str]) -> bool:
    """Exact-match membership of the role in the route's allow-list."""
    return role is not None and role in required_roles


class RBACMiddleware:
    """
    Role-Based Access Control middleware.

    Creates FastAPI dependencies for protecting routes based on:
    - User authentication
    - Role requirements
    """

    @staticmethod
    def has_roles(roles: Iterable[str]):
        """
        Dependency to check that the user's role is in the allow-list.

        Args:
            roles: Role names allowed on the route

        Returns:
            Dependency function
        """
        required = frozenset(roles)

        async def verify_roles(
            request: Request,
            user: AuthenticatedUser = Depends(get_current_user),
        ) -> AuthenticatedUser:
            if not allowed(user.role, required):
                logger.warning(
                    "Authorization rejected for user %s with role %r on %s %s",
                    user.user_id, user.role, request.method, request.url.path,
                )
                raise Forbidden()
            return user

        return verify_roles
