"""Supabase access-token verification.

Supabase signs access tokens with the project's JWT secret (HS256) and sets
``aud`` to ``authenticated``. The ``sub`` claim is the user's UUID.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from subledger.config import settings


def decode_token(token: str) -> dict:
    """Decode and verify a Supabase access token.

    Args:
        token: Encoded JWT string.

    Returns:
        Decoded payload dictionary.

    Raises:
        jose.JWTError: If the token is invalid, expired, malformed, or issued
            for another audience.
    """
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
    )


def create_access_token(
    user_id: str,
    email: str,
    expires_delta: timedelta | None = None,
    **claims,
) -> str:
    """Mint a Supabase-shaped access token (tests and local tooling).

    Args:
        user_id: The user's UUID as a string (``sub`` claim).
        email: The ``email`` claim.
        expires_delta: Token lifetime. Defaults to one hour, as Supabase does.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "aud": settings.jwt_audience,
        "role": "authenticated",
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
        **claims,
    }
    return jwt.encode(payload, settings.supabase_jwt_secret, algorithm=settings.jwt_algorithm)
