"""
Ediens Backend — Shared FastAPI Dependencies
==============================================

What:  Bearer-token authentication and service construction for routes.
How:
    - get_current_user: decodes the Authorization bearer token, loads the
      user in the request's session; 401 otherwise
    - get_optional_user: same, but anonymous requests get None
    - get_claim_service: ClaimService bound to the (overridable) session
      factory and the process-wide notification bus
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ediens.database import get_db_session, get_session_factory
from ediens.exceptions import AuthenticationError
from ediens.models.user import User
from ediens.services.auth_service import auth_service
from ediens.services.claim_service import ClaimService
from ediens.services.notifications import notification_bus

bearer_scheme = HTTPBearer(auto_error=False)


async def user_from_token(db: AsyncSession, token: str) -> User:
    claims = auth_service.decode_access_token(token)
    user = await db.get(User, claims.user_id)
    if user is None:
        raise AuthenticationError(message="Invalid token")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError(message="Access token required")
    return await user_from_token(db, credentials.credentials)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[User]:
    if credentials is None or not credentials.credentials:
        return None
    try:
        return await user_from_token(db, credentials.credentials)
    except AuthenticationError:
        return None


def get_claim_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ClaimService:
    return ClaimService(session_factory, notification_bus)
