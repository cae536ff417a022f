# Dependency injection

from typing import Generator
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from twokaj.core.security import verify_token

security = HTTPBearer()


def get_db(request: Request) -> Generator:
    """Database dependency; the session factory is owned by create_app."""
    db = request.app.state.sessionmaker()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    """
    Extract and verify JWT access token from Authorization header.
    Returns user_id if valid.
    """
    user_id = verify_token(credentials.credentials, token_type="access")

    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_id
