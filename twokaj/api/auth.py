# twokaj/api/auth.py - Authentication API endpoints

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from twokaj.core.deps import get_db, get_current_user
from twokaj.core.security import verify_token
from twokaj.schemas.entities import (
    AuthTokensResponse, LoginRequest, RefreshTokenRequest, UserCreate, UserResponse,
)
from twokaj.services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=AuthTokensResponse, status_code=status.HTTP_201_CREATED)
def register(
        request: UserCreate,
        db: Session = Depends(get_db)
):
    """
    Register a user whose id was generated on the device.

    Not idempotent: registering the same id, pseudo or email twice is a 409.
    Deferred registrations go through /sync-batch instead.
    """
    try:
        user = AuthService.register(request, db)
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User id, pseudo or email already registered"
        )

    return AuthService.issue_tokens(user)


@router.post("/login", response_model=AuthTokensResponse)
def login(
        request: LoginRequest,
        db: Session = Depends(get_db)
):
    """
    Log in with pseudo or email and password.

    Raises:
        HTTPException 400: If neither pseudo nor email is given
        HTTPException 401: If the credentials do not match
    """
    if not request.pseudo and not request.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="pseudo or email is required"
        )

    user = AuthService.authenticate(request.password, db, pseudo=request.pseudo, email=request.email)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    return AuthService.issue_tokens(user)


@router.post("/refresh")
def refresh_access_token(request: RefreshTokenRequest):
    """Exchange a refresh token for a new access token."""
    user_id = verify_token(request.refresh_token, token_type="refresh")

    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token"
        )

    return {
        "access_token": AuthService.refresh_access_token(user_id),
        "token_type": "bearer",
    }


@router.get("/me", response_model=UserResponse)
def get_current_user_info(
        user_id: str = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    user = AuthService.get_user(user_id, db)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user
