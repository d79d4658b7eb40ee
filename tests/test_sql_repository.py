"""SQL tenant store tests against a throwaway SQLite database."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.core.exceptions import DuplicateRecordError
from app.database import Base
from app.repository.sql import SqlAlchemyTenantRepository, _duplicate_field
from app.services.provisioning import ProvisioningOrchestrator
from app.services.slugs import SlugAllocator
from app.services.verification import EmailVerificationService


@pytest_asyncio.fixture
async def sql_repository(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tenants.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield SqlAlchemyTenantRepository(session)

    await engine.dispose()


async def create_tenant(repo, slug, email):
    return await repo.create_tenant(
        slug=slug,
        name=slug.title(),
        email=email,
        phone="+32 000",
        plan="starter",
        subscription_status="trial",
        trial_ends_at=datetime.now(timezone.utc) + timedelta(days=14),
    )


async def create_profile(repo, slug, email):
    return await repo.create_business_profile(
        name=slug.title(), email=email, password_hash="$2b$04$x", phone="+32 000", tenant_slug=slug
    )


class TestUniqueConstraints:

    async def test_duplicate_tenant_slug(self, sql_repository):
        await create_tenant(sql_repository, "nolim", "a@b.com")

        with pytest.raises(DuplicateRecordError) as exc_info:
            await create_tenant(sql_repository, "nolim", "c@d.com")

        assert exc_info.value.field == "slug"

    async def test_duplicate_tenant_email(self, sql_repository):
        await create_tenant(sql_repository, "nolim", "a@b.com")

        with pytest.raises(DuplicateRecordError) as exc_info:
            await create_tenant(sql_repository, "other", "a@b.com")

        assert exc_info.value.field == "email"

    async def test_duplicate_email_mentioning_slug(self, sql_repository):
        await create_tenant(sql_repository, "nolim", "slug.tenant@b.com")

        with pytest.raises(DuplicateRecordError) as exc_info:
            await create_tenant(sql_repository, "other", "slug.tenant@b.com")

        assert exc_info.value.field == "email"

    async def test_duplicate_profile_fields(self, sql_repository):
        await create_tenant(sql_repository, "nolim", "a@b.com")
        await create_tenant(sql_repository, "other", "c@d.com")
        await create_profile(sql_repository, "nolim", "a@b.com")

        with pytest.raises(DuplicateRecordError) as exc_info:
            await create_profile(sql_repository, "nolim", "x@y.com")
        assert exc_info.value.field == "tenant_slug"

        with pytest.raises(DuplicateRecordError) as exc_info:
            await create_profile(sql_repository, "other", "a@b.com")
        assert exc_info.value.field == "email"

    async def test_session_usable_after_violation(self, sql_repository):
        await create_tenant(sql_repository, "nolim", "a@b.com")
        with pytest.raises(DuplicateRecordError):
            await create_tenant(sql_repository, "nolim", "c@d.com")

        tenant = await sql_repository.get_tenant_by_slug("nolim")

        assert tenant.email == "a@b.com"
        assert tenant.plan == "starter"
        assert tenant.subscription_status == "trial"
        assert tenant.created_at is not None


class PgDiag:
    def __init__(self, constraint_name):
        self.constraint_name = constraint_name


class PgUniqueViolation(Exception):
    """Driver error shaped like psycopg's UniqueViolation."""

    def __init__(self, message, constraint_name=None):
        super().__init__(message)
        self.diag = PgDiag(constraint_name)


class TestDuplicateField:

    def test_uses_constraint_name_not_values(self):
        orig = PgUniqueViolation(
            'duplicate key value violates unique constraint "uq_tenants_email"\n'
            "DETAIL:  Key (email)=(slug@nolim.be) already exists.",
            constraint_name="uq_tenants_email",
        )

        assert _duplicate_field(IntegrityError("INSERT", {}, orig), ("slug", "email")) == "email"

    def test_falls_back_to_first_message_line(self):
        orig = PgUniqueViolation(
            'duplicate key value violates unique constraint "uq_tenants_slug"\n'
            "DETAIL:  Key (slug)=(email-frituur) already exists.",
        )

        assert _duplicate_field(IntegrityError("INSERT", {}, orig), ("slug", "email")) == "slug"

    def test_profile_constraint_prefers_tenant_slug(self):
        orig = PgUniqueViolation("unique violation", constraint_name="uq_business_profiles_tenant_slug")

        assert _duplicate_field(IntegrityError("INSERT", {}, orig), ("tenant_slug", "email")) == "tenant_slug"

    def test_unknown_constraint(self):
        orig = Exception("UNIQUE constraint failed: super_admins.email")

        assert _duplicate_field(IntegrityError("INSERT", {}, orig), ("token",)) == "unknown"


class TestMaintenanceQueries:

    async def test_orphans_and_delete(self, sql_repository):
        orphan = await create_tenant(sql_repository, "lonely", "l@x.com")
        await create_tenant(sql_repository, "owned", "o@x.com")
        await create_profile(sql_repository, "owned", "o@x.com")

        assert [t.slug for t in await sql_repository.list_orphan_tenants()] == ["lonely"]

        await sql_repository.delete_tenant(orphan.id)

        assert await sql_repository.list_orphan_tenants() == []
        assert await sql_repository.get_tenant_by_slug("lonely") is None

    async def test_purge_verification_tokens(self, sql_repository):
        now = datetime.now(timezone.utc)
        await sql_repository.create_verification_token(email="a@b.com", token="fresh", expires_at=now + timedelta(hours=1))
        await sql_repository.create_verification_token(email="a@b.com", token="stale", expires_at=now - timedelta(hours=1))
        used = await sql_repository.create_verification_token(
            email="a@b.com", token="used", expires_at=now + timedelta(hours=1)
        )
        await sql_repository.mark_verification_token_used(used.id, now)

        removed = await sql_repository.purge_verification_tokens(now)

        assert removed == 2
        assert await sql_repository.get_unused_verification_token("fresh") is not None
        assert await sql_repository.get_unused_verification_token("stale") is None

    async def test_password_reset_tokens(self, sql_repository):
        now = datetime.now(timezone.utc)
        first = await sql_repository.create_password_reset_token(
            email="a@b.com", token="one", expires_at=now + timedelta(hours=1)
        )
        await sql_repository.create_password_reset_token(email="a@b.com", token="two", expires_at=now + timedelta(hours=1))
        await sql_repository.create_password_reset_token(email="c@d.com", token="old", expires_at=now - timedelta(hours=1))

        with pytest.raises(DuplicateRecordError) as exc_info:
            await sql_repository.create_password_reset_token(email="x@y.com", token="one", expires_at=now)
        assert exc_info.value.field == "token"

        record = await sql_repository.get_unused_password_reset_token("one")
        assert record.id == first.id
        assert record.expires_at > now

        await sql_repository.mark_password_reset_token_used(first.id, now)
        assert await sql_repository.get_unused_password_reset_token("one") is None

        assert await sql_repository.delete_password_reset_tokens("a@b.com", keep_id=first.id) == 1
        assert await sql_repository.purge_password_reset_tokens(now) == 2


class TestEndToEnd:

    async def test_registration_and_verification(self, sql_repository, hasher, notifier, config, registration):
        def orchestrator():
            return ProvisioningOrchestrator(
                sql_repository, SlugAllocator(sql_repository), hasher, notifier, config
            )

        first = await orchestrator().register(registration())
        second = await orchestrator().register(registration(email="c@d.com"))

        assert first.tenant.slug == "frituurnolim"
        assert second.tenant.slug == "frituurnolim2"
        assert first.failed_steps == ()
        assert await sql_repository.list_orphan_tenants() == []

        token = notifier.sent[0]["text"].split("token=")[1].split()[0]
        service = EmailVerificationService(sql_repository, notifier)
        await service.verify(token)

        profile = await sql_repository.get_business_profile_by_email("a@b.com")
        assert profile.email_verified
        assert profile.tenant_slug == "frituurnolim"
