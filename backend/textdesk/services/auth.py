"""Access tokens for staff and customer profiles.

Sign-in lives in the storefront, which issues HS256 JWTs carrying the
profile id as ``sub``. This module verifies them; ``create_access_token``
mints compatible tokens for tooling and tests.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from sqlalchemy.orm import Session

from textdesk.core.config import settings
from textdesk.models.profile import Profile

ACCESS_TOKEN_TYPE = "access"


class InvalidTokenError(Exception):
    """Raised when a bearer token cannot be turned into a profile id."""


def create_access_token(profile_id: uuid.UUID, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": str(profile_id), "exp": expire, "type": ACCESS_TOKEN_TYPE}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def profile_id_from_token(token: str) -> uuid.UUID:
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError as exc:
        raise InvalidTokenError("Token has expired") from exc
    except jwt.PyJWTError as exc:
        raise InvalidTokenError("Invalid token") from exc

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise InvalidTokenError("Invalid token type")

    try:
        return uuid.UUID(str(payload["sub"]))
    except (KeyError, ValueError) as exc:
        raise InvalidTokenError("Invalid token payload") from exc


def get_profile_by_id(db: Session, profile_id: uuid.UUID) -> Profile | None:
    return db.get(Profile, profile_id)
