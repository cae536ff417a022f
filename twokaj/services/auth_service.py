# twokaj/services/auth_service.py - Registration and credential checks

import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from twokaj.core.security import create_access_token, create_refresh_token
from twokaj.db.models import User
from twokaj.schemas.entities import UserCreate, UserResponse

logger = logging.getLogger(__name__)


class AuthService:
    """Service for handling registration and login flows."""

    @staticmethod
    def register(request: UserCreate, db: Session) -> User:
        """
        Insert a new user with its client-assigned id.

        This is the direct (non-queued) path: a duplicate id, pseudo or email
        raises IntegrityError, which the route turns into a 409.
        """
        values = request.model_dump()
        if values.get("created_at") is None:
            values.pop("created_at")
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("New user registered: %s (%s)", user.pseudo, user.id)
        return user

    @staticmethod
    def authenticate(password: str, db: Session, pseudo: Optional[str] = None,
                     email: Optional[str] = None) -> Optional[User]:
        """
        Look up a user by pseudo or email and compare the password.

        Credentials are opaque strings compared for equality.

        Returns:
            User if the credentials match, None otherwise
        """
        filters = []
        if pseudo:
            filters.append(User.pseudo == pseudo)
        if email:
            filters.append(User.email == email)
        if not filters:
            return None

        user = db.query(User).filter(or_(*filters)).first()
        if user is None or user.password != password:
            return None
        return user

    @staticmethod
    def issue_tokens(user: User) -> dict:
        """
        Generate access + refresh tokens for an authenticated user.

        Returns:
            dict: access_token, refresh_token, token_type and user info
        """
        return {
            "access_token": create_access_token(data={"sub": user.id}),
            "refresh_token": create_refresh_token(data={"sub": user.id}),
            "token_type": "bearer",
            "user": UserResponse.model_validate(user),
        }

    @staticmethod
    def refresh_access_token(user_id: str) -> str:
        return create_access_token(data={"sub": user_id})

    @staticmethod
    def get_user(user_id: str, db: Session) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()
