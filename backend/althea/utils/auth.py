"""
Authentication utilities - bearer JWT handling and signed download tokens.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings
from ..models import TokenData

# Bearer token security; missing headers are reported as 401 below
security = HTTPBearer(auto_error=False)

DOWNLOAD_TOKEN_PURPOSE = "blob-download"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode; ``sub`` must be the user id
        expires_delta: Optional expiration time delta

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": datetime.now(timezone.utc) + lifetime})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[TokenData]:
    """
    Decode and verify a JWT access token.

    Returns:
        Optional[TokenData]: Token data if valid, None otherwise
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    user_id = payload.get("sub")
    if user_id is None or payload.get("purpose") == DOWNLOAD_TOKEN_PURPOSE:
        return None
    return TokenData(user_id=user_id, username=payload.get("username"))


def create_download_token(path: str, expires_in: Optional[int] = None) -> str:
    """Sign a short-lived token granting read access to one blob path."""
    lifetime = expires_in or settings.signed_url_expire_seconds
    claims = {
        "path": path,
        "purpose": DOWNLOAD_TOKEN_PURPOSE,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=lifetime),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_download_token(token: str) -> Optional[str]:
    """Return the blob path of a valid download token, None otherwise."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("purpose") != DOWNLOAD_TOKEN_PURPOSE:
        return None
    return payload.get("path")


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    Dependency to get the current user ID from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    token_data = decode_access_token(credentials.credentials)
    if token_data is None or token_data.user_id is None:
        raise credentials_exception

    return token_data.user_id
