"""FastAPI authentication dependencies for route protection."""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from tasy_billing.auth.jwt import decode_token
from tasy_billing.database import get_db
from tasy_billing.models.profile import Profile
from tasy_billing.services.subscription_service import get_profile

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_token_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict:
    """Validate the Bearer token and return its claims.

    Raises:
        HTTPException 401: If the header is missing or the token is invalid.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    sub: str | None = payload.get("sub")
    try:
        uuid.UUID(sub or "")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    return payload


async def get_current_profile(
    claims: dict = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Return the profile of the authenticated user.

    Raises:
        HTTPException 404: If the user has no profile row.
    """
    profile = await get_profile(db, uuid.UUID(claims["sub"]))
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User profile not found",
        )
    return profile
