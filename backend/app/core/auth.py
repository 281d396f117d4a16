"""
Best-effort resolution of the signed-in user for tracking requests.

Login and token issuance live in the auth service; tracking only needs to know
*who* (if anyone) is behind a request so visitors and sessions can be linked.
Any problem with the token simply means "anonymous".
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional

import jwt
from fastapi import Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.models import User

logger = logging.getLogger(__name__)


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return ""


def _extract_access_token(request: Request) -> str:
    cookie_name = str(getattr(settings, "ACCESS_TOKEN_COOKIE", "access_token") or "access_token")
    token = str(request.cookies.get(cookie_name) or "").strip()
    return token or bearer_token(request)


def decode_user_id(token: str) -> Optional[str]:
    """Return the `sub` claim of a valid access token, else None."""
    if not token:
        return None
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except jwt.PyJWTError as e:
        logger.debug("Ignoring invalid access token on tracking request: %s", e)
        return None
    subject = claims.get("sub")
    return str(subject) if subject else None


def is_valid_uuid(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


def resolve_request_user_id(request: Request, db: Session) -> Optional[str]:
    """Decoded user id, only if it is a UUID that exists in `users`."""
    user_id = decode_user_id(_extract_access_token(request))
    if not is_valid_uuid(user_id):
        return None
    exists = db.query(User.id).filter(User.id == str(user_id)).first()
    return str(user_id) if exists else None
