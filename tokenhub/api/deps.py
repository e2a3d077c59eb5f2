"""Shared API dependencies: caller identity and request context."""

from typing import Optional
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from tokenhub.database.database import get_db
from tokenhub.models.user import User
from tokenhub.services.request_context import ContextKey, RequestContext


def get_current_user(
    x_user_id: Optional[int] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the authenticated user from the ``X-User-Id`` header.

    The gateway's authentication layer sets this header after verifying the
    session.
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = db.query(User).filter(User.id == x_user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_request_context(user: User = Depends(get_current_user)) -> RequestContext:
    """Fresh per-request context seeded with the caller's id and group."""
    return RequestContext({
        ContextKey.USER_ID: user.id,
        ContextKey.USER_GROUP: user.group or "",
    })


def parse_bearer_key(authorization: Optional[str]) -> Optional[str]:
    """Extract the key from ``Authorization: Bearer <key>``; None if malformed."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]
