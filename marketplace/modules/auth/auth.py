"""JWT authentication dependency for FastAPI.

Validates Bearer tokens from the Authorization header and extracts the user
claims. Tokens are issued by the accounts service; this service only verifies
them.
"""

import logging
import uuid
from dataclasses import dataclass, field

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from marketplace.config import settings
from marketplace.exceptions import ForbiddenException, UnauthorizedException

logger = logging.getLogger(__name__)

# FastAPI security scheme; extracts the Bearer token from Authorization header
_bearer_scheme = HTTPBearer(auto_error=False)

STAFF_ROLES = frozenset({"admin", "moderator"})


@dataclass
class AuthenticatedUser:
    """Represents the authenticated user extracted from a JWT token."""

    id: uuid.UUID
    email: str
    roles: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.roles = [str(role).lower() for role in self.roles]

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def is_moderator(self) -> bool:
        return "moderator" in self.roles

    @property
    def is_staff(self) -> bool:
        return bool(STAFF_ROLES.intersection(self.roles))


def _decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises UnauthorizedException on failure."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """FastAPI dependency that extracts and validates the current user from JWT."""
    if credentials is None:
        raise UnauthorizedException("Authentication required")

    payload = _decode_token(credentials.credentials)

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]

    try:
        user = AuthenticatedUser(
            id=uuid.UUID(payload["sub"]),
            email=payload["email"],
            roles=list(roles),
        )
    except (KeyError, ValueError) as exc:
        raise UnauthorizedException("Token is missing required claims") from exc

    request.state.user = user
    return user


async def require_staff(
    user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    """Allow moderators and admins only."""
    if not user.is_staff:
        raise ForbiddenException("This action requires a moderator or admin")
    return user


async def require_admin(
    user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    if not user.is_admin:
        raise ForbiddenException("This action requires an admin")
    return user
