"""Helpers for putting records straight into the in-memory store."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from app.repository.memory import InMemoryTenantRepository

TEST_SECRET = "test-session-secret-that-is-long-enough-for-hs256"


async def seed_tenant(repo: InMemoryTenantRepository, slug: str, email: Optional[str] = None):
    """Insert a bare tenant row."""
    return await repo.create_tenant(
        slug=slug,
        name=slug.title(),
        email=email or f"{slug}@example.com",
        phone="+32 000",
        plan="starter",
        subscription_status="trial",
        trial_ends_at=datetime.now(timezone.utc) + timedelta(days=14),
    )


async def seed_owner(repo: InMemoryTenantRepository, slug: str, email: str, password_hash: str = "$2b$04$x"):
    """Insert a tenant with its business profile."""
    await seed_tenant(repo, slug, email)
    return await repo.create_business_profile(
        name=slug.title(),
        email=email,
        password_hash=password_hash,
        phone="+32 000",
        tenant_slug=slug,
    )
