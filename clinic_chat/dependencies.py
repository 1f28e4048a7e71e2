"""
FastAPI dependency injection for authentication and services
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from starlette.requests import HTTPConnection

from clinic_chat.exceptions import Unauthenticated
from clinic_chat.models.user import User
from clinic_chat.utils.security import verify_access_token

logger = logging.getLogger(__name__)

# Security scheme for JWT Bearer tokens; missing credentials are reported
# by get_current_user so the response carries the WWW-Authenticate header
security = HTTPBearer(auto_error=False)


async def authenticate_token(token: Optional[str], directory) -> User:
    """
    Resolve a bearer token to an active directory user.

    Shared by the REST dependency and the realtime handshake.

    Raises:
        Unauthenticated: token missing, invalid, expired, or user unknown
        PersistenceFailure: the directory lookup failed
    """
    if not token:
        raise Unauthenticated("Authentication token required")

    try:
        payload = verify_access_token(token)
    except JWTError as e:
        logger.info(f"Token verification failed: {e}")
        raise Unauthenticated()

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token (missing user ID)")

    user = await directory.get_user(user_id)
    if user is None:
        raise Unauthenticated("Authenticated user not found")
    if not user.is_active:
        raise Unauthenticated("User account is inactive")
    return user


def get_directory(conn: HTTPConnection):
    return conn.app.state.directory


def get_chat_service(conn: HTTPConnection):
    return conn.app.state.chat_service


def get_gateway(conn: HTTPConnection):
    return conn.app.state.gateway


def get_presence(conn: HTTPConnection):
    return conn.app.state.presence


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    directory=Depends(get_directory),
) -> User:
    """
    Dependency to get the current authenticated user from JWT token

    Raises:
        HTTPException: If token is invalid or user not found
    """
    token = credentials.credentials if credentials else None
    try:
        return await authenticate_token(token, directory)
    except Unauthenticated as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
