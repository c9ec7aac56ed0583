"""Supabase access token verification."""

from jose import jwt

from tasy_billing.config import settings


def decode_token(token: str) -> dict:
    """Decode and verify a Supabase access token.

    Args:
        token: Encoded JWT string from the ``Authorization`` header.

    Returns:
        Decoded payload dictionary. ``sub`` holds the auth user UUID.

    Raises:
        jose.JWTError: If the token is invalid, expired, malformed, or issued
            for another audience.
    """
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=[settings.supabase_jwt_algorithm],
        audience=settings.supabase_jwt_audience,
    )
