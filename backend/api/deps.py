"""
RebalanceOps API Dependencies

Dependency injection for DB sessions, auth, tenant context, and the
repositories the routers work through.
"""

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import AsyncSessionLocal, set_tenant_context
from rebalance.engine import AllocationEngineClient
from rebalance.repositories import (
    ConstraintRepository,
    SqlConstraintRepository,
    SqlSuggestionRepository,
    SuggestionRepository,
)

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

DEV_CUSTOMER_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": "dev-user",
            "email": "dev@rebalanceops.local",
            "customer_id": DEV_CUSTOMER_ID,
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


def get_customer_id(user: dict = Depends(get_current_user)) -> uuid.UUID:
    """Tenant of the current request."""
    customer_id = user.get("customer_id")
    if not customer_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No customer context",
        )
    try:
        return uuid.UUID(str(customer_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Malformed customer context",
        )


async def get_tenant_db(
    db: AsyncSession = Depends(get_db),
    customer_id: uuid.UUID = Depends(get_customer_id),
) -> AsyncSession:
    """
    Get a DB session with tenant context set.
    Sets PostgreSQL RLS variable for row-level security.
    """
    await set_tenant_context(db, customer_id)
    return db


def get_constraint_repository(
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: uuid.UUID = Depends(get_customer_id),
) -> ConstraintRepository:
    return SqlConstraintRepository(db, customer_id)


def get_suggestion_repository(
    db: AsyncSession = Depends(get_tenant_db),
    customer_id: uuid.UUID = Depends(get_customer_id),
) -> SuggestionRepository:
    return SqlSuggestionRepository(db, customer_id)


def get_engine_client() -> AllocationEngineClient:
    return AllocationEngineClient()
