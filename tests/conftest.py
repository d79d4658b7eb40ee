"""Pytest configuration and fixtures for the tenant platform tests."""

import os
import tempfile

# Must be set before anything imports app.core.config (settings are cached)
os.environ.setdefault("ENV_MODE", "development")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-that-is-long-enough-for-hs256")
os.environ.setdefault(
    "COMPENSATION_LOG_FILE", os.path.join(tempfile.gettempdir(), "tenant-platform-tests", "compensation.log")
)

from typing import Optional

import httpx
import pytest
import pytest_asyncio

from app.repository.memory import InMemoryTenantRepository
from app.services.notifications.mock import MockNotificationService
from app.services.passwords import PasswordHasher
from app.services.provisioning import ProvisioningConfig, ProvisioningOrchestrator, RegistrationRequest
from app.services.sessions import SessionTokenService
from app.services.slugs import SlugAllocator
from tests.factories import TEST_SECRET


@pytest.fixture
def repository():
    """Fresh in-memory tenant store."""
    return InMemoryTenantRepository()


@pytest.fixture
def hasher():
    """Cheap bcrypt hasher."""
    instance = PasswordHasher(rounds=4, max_workers=2, legacy_salt="legacy-salt")
    yield instance
    instance.shutdown()


@pytest.fixture
def notifier():
    """Mock email sender that never fails and never sleeps."""
    return MockNotificationService(failure_rate=0.0, latency=(0.0, 0.0))


@pytest.fixture
def sessions():
    return SessionTokenService(secret=TEST_SECRET)


@pytest.fixture
def config():
    return ProvisioningConfig(
        protected_slugs=frozenset(),
        registration_timeout=5.0,
        periphery_step_timeout=1.0,
        compensation_timeout=1.0,
        verify_url_base="http://testserver/auth/verify-email",
    )


@pytest.fixture
def make_orchestrator(repository, hasher, notifier, config):
    """Build an orchestrator; keyword arguments override the defaults."""

    def factory(
        repo: Optional[InMemoryTenantRepository] = None,
        cfg: Optional[ProvisioningConfig] = None,
        **allocator_kwargs,
    ) -> ProvisioningOrchestrator:
        repo = repo or repository
        return ProvisioningOrchestrator(
            repo,
            SlugAllocator(repo, **allocator_kwargs),
            hasher,
            notifier,
            cfg or config,
        )

    return factory


@pytest.fixture
def registration():
    """Valid registration input."""

    def factory(
        business_name: str = "Frituur Nolim!!",
        email: str = "a@b.com",
        phone: str = "+32 470 12 34 56",
        password: str = "12345678",
    ) -> RegistrationRequest:
        return RegistrationRequest(business_name=business_name, email=email, phone=phone, password=password)

    return factory


@pytest_asyncio.fixture
async def client(repository, hasher, notifier, sessions):
    """HTTP client against the FastAPI app with test collaborators."""
    from app.main import app
    from app.repository import get_tenant_repository
    from app.services.notifications import get_notification_service
    from app.services.passwords import get_password_hasher
    from app.services.rate_limit import limit_api, limit_login, limit_register, limit_superadmin_login
    from app.services.sessions import get_session_service

    async def override_repository():
        return repository

    async def no_limit():
        return None

    app.dependency_overrides[get_tenant_repository] = override_repository
    app.dependency_overrides[get_password_hasher] = lambda: hasher
    app.dependency_overrides[get_notification_service] = lambda: notifier
    app.dependency_overrides[get_session_service] = lambda: sessions
    for limiter in (limit_register, limit_login, limit_superadmin_login, limit_api):
        app.dependency_overrides[limiter] = no_limit

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client

    app.dependency_overrides.clear()
