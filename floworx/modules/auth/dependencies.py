"""Authentication dependencies for API routes.

Provides get_current_user dependency for protecting routes.
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from floworx.core.database import get_db
from floworx.core.errors import AuthenticationError
from floworx.models.user import User
from floworx.modules.auth.service import AuthService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    FastAPI dependency to get the currently authenticated user.

    Requires an `Authorization: Bearer <jwt>` header.

    Raises:
        AuthenticationError: 401 if the header is missing or the token is
            invalid, expired, or belongs to a deleted/disabled account

    Usage:
        @router.get("/status")
        async def status(user: User = Depends(get_current_user)):
            return {"email": user.email}
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise AuthenticationError("Authentication required", code="UNAUTHORIZED")

    return await AuthService(db).verify_token(credentials.credentials)
