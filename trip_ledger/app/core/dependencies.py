"""
Authentication and service dependencies for FastAPI.

Users are managed by an external identity service; this service trusts the
signed ``user_id`` claim of the bearer token and uses it as the owner of
every ledger it touches.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from trip_ledger.app.core.jwt import decode_access_token
from trip_ledger.app.db.session import get_db
from trip_ledger.app.services.ledger_service import TripLedgerService

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Args:
        credentials: HTTP Bearer token from request header

    Returns:
        Decoded token payload containing ``user_id``

    Raises:
        HTTPException: 401 if the token is invalid, expired or has no user
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("user_id")
    if not isinstance(user_id, int):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_ledger_service(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> TripLedgerService:
    """Ledger service scoped to the authenticated owner."""
    return TripLedgerService(db, owner_id=current_user["user_id"])
