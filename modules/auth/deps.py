"""
Auth Module - Dependencies
===========================
FastAPI dependencies for user authentication and authorization.
These are injected into route handlers via Depends().

Auth: `Authorization: Bearer <jwt>`; `sub` carries the user id.
"""

from typing import Optional

from fastapi import Request, Depends, HTTPException, status
from sqlalchemy.orm import Session

from config.database import get_db
from common.security import decode_token
from modules.user.models import User


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_active_user(request: Request, db: Session = Depends(get_db)):
    """
    Identify the current user from the Bearer token.
    Returns User object or None.
    """
    token = _bearer_token(request)
    if not token:
        return None

    payload = decode_token(token)
    if not payload:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()
    return user


def require_login(user=Depends(get_current_active_user)):
    """Require any authenticated active user. Raises 401 if not logged in."""
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user


def require_billing_admin(user=Depends(require_login)):
    """Only company owners and admins may start payments. Raises 403 otherwise."""
    if not user.can_manage_billing:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only company owners and admins can manage billing",
        )
    return user
