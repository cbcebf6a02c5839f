from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from textdesk.core.database import get_db
from textdesk.models.profile import Profile
from textdesk.services.auth import InvalidTokenError, get_profile_by_id, profile_id_from_token

security = HTTPBearer()


def get_current_profile(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Profile:
    """Resolve the Bearer access token to a stored profile."""
    try:
        profile_id = profile_id_from_token(credentials.credentials)
    except InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    profile = get_profile_by_id(db, profile_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Profile not found",
        )
    return profile


def get_admin_profile(
    current_profile: Profile = Depends(get_current_profile),
) -> Profile:
    """Require the admin role, as stored on the profile row.

    Token claims carry no role; the database is asked on every request.
    """
    if not current_profile.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_profile
