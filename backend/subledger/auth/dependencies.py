"""FastAPI authentication dependencies for route protection."""

import logging
import uuid

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.auth.jwt import decode_token
from subledger.auth.session import AuthSession
from subledger.billing.errors import Unauthorized
from subledger.database import get_db
from subledger.models.user import Profile
from subledger.services.subscription_service import get_or_create_profile

logger = logging.getLogger(__name__)

# Missing credentials are reported as 401 by get_auth_session, not 403
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_auth_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthSession:
    """Validate the Bearer token and return the caller's session.

    Raises:
        Unauthorized: If the token is missing, invalid, expired, or lacks
            a usable ``sub`` / ``email`` claim.
    """
    if credentials is None:
        raise Unauthorized("Not authenticated")

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise Unauthorized() from None

    sub: str | None = payload.get("sub")
    email: str | None = payload.get("email")
    if sub is None or not email:
        raise Unauthorized()

    try:
        user_id = uuid.UUID(sub)
    except ValueError:
        raise Unauthorized() from None

    return AuthSession(user_id=user_id, email=email, claims=payload)


async def get_current_profile(
    session: AuthSession = Depends(get_auth_session),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Return the caller's profile, creating it (with a free subscription) on first sight.

    Raises:
        Unauthorized: If the profile has been deactivated.
    """
    profile = await get_or_create_profile(db, session.user_id, session.email)
    if not profile.is_active:
        logger.info("Rejected request from inactive profile %s", profile.id)
        raise Unauthorized("User account is inactive")
    return profile
