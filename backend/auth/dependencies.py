"""
FastAPI dependencies for authentication and authorization.

This module provides dependency functions that can be used in route handlers to:
- Extract and validate the current user from a JWT bearer token
- Build the request's Principal for the access policy
- Enforce admin-only endpoints
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from errors import Forbidden
from models import Role, User
from auth.permissions import Principal
from auth.security import verify_token

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Extract and validate the current user from the Authorization header.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired, if the
            user no longer exists, or if the account is deactivated

    Example:
        @router.get("/api/protected")
        def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}
    """
    if not credentials or not credentials.credentials:
        logger.info("No authentication credentials provided")
        raise _unauthorized("Not authenticated")

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid or expired token")

    if payload.get("type") != "access":
        logger.info(f"Invalid token type: {payload.get('type')}")
        raise _unauthorized("Invalid token type. Use access token for API requests.")

    # Malformed tokens should return 401, not 500
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        logger.info(f"Invalid user_id format in token: {payload.get('sub')}")
        raise _unauthorized("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.info(f"User not found for id: {user_id}")
        raise _unauthorized("No user found with this token")

    if not user.is_active:
        logger.info(f"Deactivated user attempted access: {user_id}")
        raise _unauthorized("User account is deactivated")

    logger.debug(f"User authenticated via JWT: {user.email}")
    return user


def get_principal(current_user: User = Depends(get_current_user)) -> Principal:
    """The authenticated actor as seen by the access policy."""
    return Principal.of(current_user)


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """
    Dependency for admin-only endpoints.

    Raises:
        Forbidden: the authenticated user is not an admin

    Example:
        @router.get("/api/users/stats")
        def user_stats(admin: User = Depends(get_current_admin)):
            ...
    """
    if current_user.role != Role.admin:
        logger.info(
            f"Access denied: user {current_user.email} has role '{current_user.role.value}', "
            f"but 'admin' is required"
        )
        raise Forbidden(f"User role {current_user.role.value} is not authorized to access this route")
    return current_user
