# twokaj/core/security.py - JWT token creation and verification

from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from twokaj.core.config import Settings, get_settings


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None,
                        settings: Optional[Settings] = None) -> str:
    """
    Create a short-lived JWT access token.

    Args:
        data: Payload to encode (typically {"sub": user_id})
        expires_delta: Custom expiration time (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)
        settings: Settings to sign with (defaults to the process settings)

    Returns:
        str: Encoded JWT token
    """
    settings = settings or get_settings()
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None,
                         settings: Optional[Settings] = None) -> str:
    """
    Create a long-lived JWT refresh token.

    The device keeps it so a session survives long offline periods and can
    get a new access token on reconnect.
    """
    settings = settings or get_settings()
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    to_encode.update({"exp": expire, "type": "refresh"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str, token_type: Optional[str] = None,
                 settings: Optional[Settings] = None) -> Optional[str]:
    """
    Verify JWT token and extract user ID.

    Args:
        token: JWT token to verify
        token_type: When given, the token's "type" claim must match it

    Returns:
        str: User ID if token is valid, None otherwise
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    if token_type and payload.get("type") != token_type:
        return None
    return payload.get("sub")
