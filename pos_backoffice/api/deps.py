"""
FastAPI dependencies for authentication, authorization and services.

This module provides dependency functions for JWT bearer authentication,
role-based access control, database session injection and construction of
the order modification service.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pos_backoffice.core.config import get_settings
from pos_backoffice.core.logging import get_logger, set_actor_id
from pos_backoffice.core.security import TokenError, decode_token, get_token_user_id
from pos_backoffice.database.connection import get_db
from pos_backoffice.database.models.user import User
from pos_backoffice.services.order_modifications.service import OrderModificationService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Validate JWT token and retrieve current authenticated user.

    Args:
        credentials: HTTP Bearer token from Authorization header
        db: Database session

    Returns:
        User: Authenticated user object

    Raises:
        HTTPException: 401 if token is invalid, expired, or user not found;
            403 if the account is inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        payload = decode_token(credentials.credentials)
        user_id = get_token_user_id(payload)
    except TokenError as e:
        logger.warning(
            "Authentication failed: token rejected",
            code=e.code,
            **e.context,
        )
        raise credentials_exception from e

    try:
        user = await db.get(User, user_id)
    except SQLAlchemyError as e:
        logger.error(
            "Database error during user retrieval",
            user_id=user_id,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e

    if user is None:
        logger.warning("Authentication failed: User not found", user_id=user_id)
        raise credentials_exception

    if not user.is_active:
        logger.warning("Authentication failed: User account is inactive", user_id=user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )

    set_actor_id(user.id)
    logger.debug("User authenticated", user_id=user.id, role=user.role.value)

    return user


async def get_current_manager(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Dependency for endpoints that approve or reject amendments."""
    if not current_user.role.can_approve_amendments():
        logger.warning(
            "Access denied: Insufficient permissions",
            user_id=current_user.id,
            user_role=current_user.role.value,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return current_user


def get_order_modification_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> OrderModificationService:
    """
    Dependency for order modification service initialization.

    Args:
        db: Database session

    Returns:
        OrderModificationService bound to the request's session
    """
    return OrderModificationService(db, settings=get_settings())


CurrentActiveUser = Annotated[User, Depends(get_current_user)]
ManagerUser = Annotated[User, Depends(get_current_manager)]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
ModificationService = Annotated[
    OrderModificationService, Depends(get_order_modification_service)
]
