"""
Tenant Repository Factory

Returns the SQL or in-memory tenant store based on STORE_BACKEND.

Usage:
    from app.repository import get_tenant_repository

    @app.get("/...")
    async def route(repo: BaseTenantRepository = Depends(get_tenant_repository)):
        tenant = await repo.get_tenant_by_slug("frituurnolim")

Author: Khalil Bannouri
Version: 4.0.0
"""

import logging
from functools import lru_cache
from typing import AsyncIterator

from app.core.config import StoreBackend, get_settings
from app.database import async_session_maker
from app.repository.base import (
    BaseTenantRepository,
    BusinessProfileRecord,
    PasswordResetTokenRecord,
    SubscriptionRecord,
    SuperAdminRecord,
    TenantRecord,
    TenantSettingsRecord,
    VerificationTokenRecord,
)
from app.repository.memory import InMemoryTenantRepository
from app.repository.sql import SqlAlchemyTenantRepository

logger = logging.getLogger(__name__)


@lru_cache()
def get_memory_repository() -> InMemoryTenantRepository:
    """Process-wide in-memory store (STORE_BACKEND=memory)."""
    logger.info("Tenant Store: Using InMemoryTenantRepository")
    return InMemoryTenantRepository()


async def get_tenant_repository() -> AsyncIterator[BaseTenantRepository]:
    """
    FastAPI dependency yielding the configured tenant store.

    The SQL store gets a fresh session per request, closed afterwards.
    """
    settings = get_settings()

    if settings.store_backend == StoreBackend.MEMORY:
        yield get_memory_repository()
        return

    async with async_session_maker() as session:
        yield SqlAlchemyTenantRepository(session)


def reset_memory_repository() -> None:
    """Drop the cached in-memory store."""
    get_memory_repository.cache_clear()


__all__ = [
    "get_tenant_repository",
    "get_memory_repository",
    "reset_memory_repository",
    "BaseTenantRepository",
    "InMemoryTenantRepository",
    "SqlAlchemyTenantRepository",
    "TenantRecord",
    "BusinessProfileRecord",
    "TenantSettingsRecord",
    "SubscriptionRecord",
    "VerificationTokenRecord",
    "PasswordResetTokenRecord",
    "SuperAdminRecord",
]
