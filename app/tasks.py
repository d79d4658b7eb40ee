"""
Celery Tasks
Background maintenance of the tenant store.

The store API is async; each task runs its own event loop and releases
the engine's connections before returning, so pooled connections never
outlive the loop that opened them.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from app.celery_worker import celery_app
from app.core.config import COMPENSATION_LOGGER, StoreBackend, get_settings
from app.database import async_session_maker, engine
from app.repository import BaseTenantRepository, SqlAlchemyTenantRepository, get_memory_repository

logger = logging.getLogger(__name__)
compensation_logger = logging.getLogger(COMPENSATION_LOGGER)

T = TypeVar("T")


async def run_with_repository(work: Callable[[BaseTenantRepository], Awaitable[T]]) -> T:
    if get_settings().store_backend == StoreBackend.MEMORY:
        return await work(get_memory_repository())

    try:
        async with async_session_maker() as session:
            return await work(SqlAlchemyTenantRepository(session))
    finally:
        await engine.dispose()


async def purge_tokens(repository: BaseTenantRepository, now: datetime) -> int:
    """Delete used and expired verification and password reset tokens."""
    verification = await repository.purge_verification_tokens(now)
    reset = await repository.purge_password_reset_tokens(now)
    return verification + reset


async def find_orphans(repository: BaseTenantRepository) -> list[dict]:
    """Tenants without a business profile, for operator follow-up."""
    orphans = await repository.list_orphan_tenants()
    return [
        {
            "id": t.id,
            "slug": t.slug,
            "email": t.email,
            "created_at": t.created_at.isoformat() if t.created_at else None,
        }
        for t in orphans
    ]


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def purge_expired_verification_tokens(self) -> dict:
    """
    Remove verification and password reset tokens that can no longer be used.

    Returns:
        dict: Number of deleted tokens and timing
    """
    task_id = self.request.id
    start_time = time.time()
    now = datetime.now(timezone.utc)

    deleted = asyncio.run(run_with_repository(lambda repo: purge_tokens(repo, now)))

    elapsed = round(time.time() - start_time, 3)
    logger.info(f"Task {task_id}: purged {deleted} tokens in {elapsed}s")
    return {
        'success': True,
        'deleted': deleted,
        'task_id': task_id,
        'processing_time_seconds': elapsed,
    }


@celery_app.task
def report_orphan_tenants() -> dict:
    """
    Log tenants left behind by failed compensations.

    Each orphan also goes to the durable compensation log.
    """
    orphans = asyncio.run(run_with_repository(find_orphans))

    for orphan in orphans:
        compensation_logger.critical(
            f"ORPHAN TENANT: id={orphan['id']} slug={orphan['slug']} email={orphan['email']}"
        )

    return {
        'success': True,
        'orphans': orphans,
        'timestamp': datetime.now(timezone.utc).isoformat()
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
