from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from voter_portal.db.database import Database, get_database
from voter_portal.schemas.user_schemas import RoleName, UserRecord
from voter_portal.services.user_service import UserService
from voter_portal.utils.auth import ROLE_HIERARCHY, AuthUtils
from voter_portal.utils.errors import AuthenticationError, AuthorizationError
from voter_portal.utils.logging import get_logger

logger = get_logger()


class AuthState:
    """Authentication state to be stored in request.state"""

    def __init__(
        self,
        user_id: int,
        email: str,
        role: str,
        is_authenticated: bool = True,
    ):
        self.user_id = user_id
        self.email = email
        self.role = role
        self.is_authenticated = is_authenticated


class JWTBearer(HTTPBearer):
    """Bearer token extraction that fails with 401 before the handler runs"""

    def __init__(self):
        super().__init__(auto_error=False)

    async def __call__(self, request: Request) -> dict:
        """Return the verified token payload"""
        credentials: Optional[HTTPAuthorizationCredentials] = await super().__call__(
            request
        )

        if not credentials:
            raise AuthenticationError("Authentication required", "NOT_AUTHENTICATED")

        if credentials.scheme.lower() != "bearer":
            raise AuthenticationError("Invalid authentication scheme", "INVALID_SCHEME")

        payload = AuthUtils.verify_access_token(credentials.credentials)
        if not payload:
            raise AuthenticationError("Invalid or expired token", "INVALID_TOKEN")

        return payload


jwt_bearer = JWTBearer()


async def get_current_user(
    request: Request,
    payload: dict = Depends(jwt_bearer),
    database: Database = Depends(get_database),
) -> UserRecord:
    """
    Dependency resolving the authenticated user.

    Token claims are not trusted for role or activation: the user row is
    re-read on every request, so deactivation takes effect immediately.
    """
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid or expired token", "INVALID_TOKEN")

    user = await UserService(database).get_user_by_id(user_id)
    if user is None or not user.is_active:
        logger.warning(f"Rejected token for missing or inactive user {user_id}")
        raise AuthenticationError("User not found or inactive", "USER_INACTIVE")

    request.state.auth = AuthState(
        user_id=user.id, email=user.email, role=user.role.value
    )
    return user


def require_role(role: RoleName):
    """Create dependency that requires at least ``role`` in the role hierarchy"""
    if role not in ROLE_HIERARCHY:
        raise ValueError(f"Unknown role: {role}")

    async def check_role(current_user: UserRecord = Depends(get_current_user)) -> UserRecord:
        if not AuthUtils.has_role(current_user.role.value, role):
            raise AuthorizationError(
                "Insufficient permissions", "INSUFFICIENT_PERMISSIONS"
            )
        return current_user

    return check_role


# Pre-defined dependencies for common roles
require_volunteer = require_role("volunteer")
require_supervisor = require_role("supervisor")
require_admin = require_role("admin")
