"""
FastAPI Authentication Dependencies
Provides clean dependency injection for authentication across routes
"""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional

from models import User
from db import get_db
from utils.auth_middleware import get_auth_context, log_authentication_attempt


def resolve_user_by_subject(subject: str, db: Session, username: Optional[str] = None) -> User:
    """
    Load the learner for an identity-provider subject, creating the row on
    first authentication
    """
    user = db.query(User).filter(User.external_id == subject).first()
    if user:
        return user

    user = User(external_id=subject, username=username or subject, xp=0, level=1)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same learner first
        db.rollback()
        return db.query(User).filter(User.external_id == subject).one()
    db.refresh(user)
    return user


async def get_current_user_optional(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """
    Get current user if authenticated, None otherwise
    Use this for endpoints where authentication is optional
    """
    auth_context = get_auth_context(request)
    if not auth_context.is_authenticated:
        return None

    return resolve_user_by_subject(auth_context.subject, db, auth_context.claims.get("username"))


async def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Get current authenticated user - raises 401 if not authenticated
    Use this for endpoints that require authentication
    """
    user = await get_current_user_optional(request, db)

    if not user:
        log_authentication_attempt(request, False, error="No authenticated user found")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    log_authentication_attempt(request, True, user_id=user.id)
    return user
