"""
SQLAlchemy Tenant Repository

PostgreSQL implementation of the tenant store. Every write is committed
on its own: the hosted store offers no cross-table transaction, and the
provisioning saga is written against exactly that model.

Integrity violations are translated to DuplicateRecordError carrying the
offending column, so the saga can tell a slug race from an email clash.

Author: Khalil Bannouri
Version: 4.0.0
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import delete, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DuplicateRecordError, RepositoryError
from app.models import (
    BusinessProfile,
    EmailVerificationToken,
    PasswordResetToken,
    Plan,
    Subscription,
    SubscriptionStatus,
    SuperAdmin,
    Tenant,
    TenantSettings,
)
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

logger = logging.getLogger(__name__)


# =============================================================================
# ROW MAPPING
# =============================================================================

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Drivers without timezone support hand back naive UTC values."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _tenant(row: Tenant) -> TenantRecord:
    return TenantRecord(
        id=row.id,
        slug=row.slug,
        name=row.name,
        email=row.email,
        phone=row.phone,
        plan=_enum_value(row.plan),
        subscription_status=_enum_value(row.subscription_status),
        trial_ends_at=_aware(row.trial_ends_at),
        created_at=_aware(row.created_at),
    )


def _profile(row: BusinessProfile) -> BusinessProfileRecord:
    return BusinessProfileRecord(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        phone=row.phone,
        tenant_slug=row.tenant_slug,
        email_verified=bool(row.email_verified),
        email_verified_at=_aware(row.email_verified_at),
    )


def _token(row: EmailVerificationToken) -> VerificationTokenRecord:
    return VerificationTokenRecord(
        id=row.id,
        email=row.email,
        token=row.token,
        expires_at=_aware(row.expires_at),
        used_at=_aware(row.used_at),
    )


def _reset_token(row: PasswordResetToken) -> PasswordResetTokenRecord:
    return PasswordResetTokenRecord(
        id=row.id,
        email=row.email,
        token=row.token,
        expires_at=_aware(row.expires_at),
        used_at=_aware(row.used_at),
    )


def _admin(row: SuperAdmin) -> SuperAdminRecord:
    return SuperAdminRecord(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        is_active=bool(row.is_active),
        last_login=_aware(row.last_login),
    )


def _duplicate_field(error: IntegrityError, candidates: Sequence[str]) -> str:
    """
    Work out which unique column an IntegrityError is about.

    Only the constraint or column name is inspected, never the message
    detail, which echoes the offending values. psycopg exposes the
    constraint name (uq_tenants_slug) on ``diag``; otherwise the first line
    of the driver message is used, which names the constraint on PostgreSQL
    and the column on SQLite (tenants.slug). Candidates are checked in
    order, so list the more specific names first ("tenant_slug" before
    "slug").
    """
    source = getattr(getattr(error.orig, "diag", None), "constraint_name", None)
    if not source:
        lines = str(error.orig).strip().splitlines()
        source = lines[0] if lines else ""
    source = source.lower()
    for candidate in candidates:
        if candidate in source:
            return candidate
    return "unknown"


class SqlAlchemyTenantRepository(BaseTenantRepository):
    """Tenant store backed by an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def backend_name(self) -> str:
        return "postgresql"

    @asynccontextmanager
    async def _errors(
        self,
        operation: str,
        unique_fields: Sequence[str] = (),
    ) -> AsyncIterator[None]:
        """Translate SQLAlchemy failures into repository errors."""
        try:
            yield
        except IntegrityError as e:
            await self.session.rollback()
            field = _duplicate_field(e, unique_fields)
            raise DuplicateRecordError(
                f"{operation}: unique constraint on {field}",
                field=field,
                operation=operation,
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Store error in {operation}: {e}")
            raise RepositoryError(f"{operation} failed: {e}", operation=operation) from e

    async def _add(self, row: Any) -> Any:
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)
        return row

    # =========================================================================
    # TENANTS
    # =========================================================================

    async def get_tenant_by_slug(self, slug: str) -> Optional[TenantRecord]:
        async with self._errors("get_tenant_by_slug"):
            result = await self.session.execute(select(Tenant).where(Tenant.slug == slug))
            row = result.scalar_one_or_none()
        return _tenant(row) if row else None

    async def get_tenant_by_email(self, email: str) -> Optional[TenantRecord]:
        async with self._errors("get_tenant_by_email"):
            result = await self.session.execute(select(Tenant).where(Tenant.email == email))
            row = result.scalar_one_or_none()
        return _tenant(row) if row else None

    async def create_tenant(
        self,
        *,
        slug: str,
        name: str,
        email: str,
        phone: str,
        plan: str,
        subscription_status: str,
        trial_ends_at: Optional[datetime],
    ) -> TenantRecord:
        async with self._errors("create_tenant", unique_fields=("slug", "email")):
            row = await self._add(Tenant(
                slug=slug,
                name=name,
                email=email,
                phone=phone,
                plan=Plan(plan),
                subscription_status=SubscriptionStatus(subscription_status),
                trial_ends_at=trial_ends_at,
            ))
        return _tenant(row)

    async def delete_tenant(self, tenant_id: str) -> None:
        async with self._errors("delete_tenant"):
            await self.session.execute(delete(Tenant).where(Tenant.id == tenant_id))
            await self.session.commit()

    async def list_orphan_tenants(self) -> list[TenantRecord]:
        async with self._errors("list_orphan_tenants"):
            result = await self.session.execute(
                select(Tenant)
                .outerjoin(BusinessProfile, BusinessProfile.tenant_slug == Tenant.slug)
                .where(BusinessProfile.id.is_(None))
                .order_by(Tenant.created_at)
            )
            rows = result.scalars().all()
        return [_tenant(row) for row in rows]

    # =========================================================================
    # BUSINESS PROFILES
    # =========================================================================

    async def get_business_profile(self, profile_id: str) -> Optional[BusinessProfileRecord]:
        async with self._errors("get_business_profile"):
            row = await self.session.get(BusinessProfile, profile_id)
        return _profile(row) if row else None

    async def get_business_profile_by_email(self, email: str) -> Optional[BusinessProfileRecord]:
        async with self._errors("get_business_profile_by_email"):
            result = await self.session.execute(
                select(BusinessProfile).where(BusinessProfile.email == email)
            )
            row = result.scalar_one_or_none()
        return _profile(row) if row else None

    async def create_business_profile(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        phone: str,
        tenant_slug: str,
    ) -> BusinessProfileRecord:
        async with self._errors("create_business_profile", unique_fields=("tenant_slug", "email")):
            row = await self._add(BusinessProfile(
                name=name,
                email=email,
                password_hash=password_hash,
                phone=phone,
                tenant_slug=tenant_slug,
            ))
        return _profile(row)

    async def update_business_profile(self, profile_id: str, **fields: Any) -> None:
        async with self._errors("update_business_profile"):
            result = await self.session.execute(
                update(BusinessProfile).where(BusinessProfile.id == profile_id).values(**fields)
            )
            await self.session.commit()
        if result.rowcount == 0:
            raise RepositoryError(f"profile {profile_id} not found", operation="update_business_profile")

    async def mark_email_verified(self, email: str, verified_at: datetime) -> int:
        async with self._errors("mark_email_verified"):
            result = await self.session.execute(
                update(BusinessProfile)
                .where(BusinessProfile.email == email)
                .values(email_verified=True, email_verified_at=verified_at)
            )
            await self.session.commit()
        return result.rowcount

    # =========================================================================
    # PERIPHERY RECORDS
    # =========================================================================

    async def create_tenant_settings(
        self,
        *,
        tenant_slug: str,
        business_name: str,
        email: Optional[str],
        phone: Optional[str],
        primary_color: str,
        secondary_color: str,
    ) -> TenantSettingsRecord:
        async with self._errors("create_tenant_settings", unique_fields=("tenant_slug",)):
            row = await self._add(TenantSettings(
                tenant_slug=tenant_slug,
                business_name=business_name,
                email=email,
                phone=phone,
                primary_color=primary_color,
                secondary_color=secondary_color,
            ))
        return TenantSettingsRecord(
            id=row.id,
            tenant_slug=row.tenant_slug,
            business_name=row.business_name,
            email=row.email,
            phone=row.phone,
            primary_color=row.primary_color,
            secondary_color=row.secondary_color,
        )

    async def create_subscription(
        self,
        *,
        tenant_slug: str,
        plan: str,
        status: str,
        price_monthly: float,
        trial_started_at: Optional[datetime],
        trial_ends_at: Optional[datetime],
    ) -> SubscriptionRecord:
        async with self._errors("create_subscription"):
            row = await self._add(Subscription(
                tenant_slug=tenant_slug,
                plan=Plan(plan),
                status=SubscriptionStatus(status),
                price_monthly=price_monthly,
                trial_started_at=trial_started_at,
                trial_ends_at=trial_ends_at,
            ))
        return SubscriptionRecord(
            id=row.id,
            tenant_slug=row.tenant_slug,
            plan=_enum_value(row.plan),
            status=_enum_value(row.status),
            price_monthly=row.price_monthly,
            trial_started_at=_aware(row.trial_started_at),
            trial_ends_at=_aware(row.trial_ends_at),
        )

    # =========================================================================
    # EMAIL VERIFICATION TOKENS
    # =========================================================================

    async def create_verification_token(
        self,
        *,
        email: str,
        token: str,
        expires_at: datetime,
    ) -> VerificationTokenRecord:
        async with self._errors("create_verification_token", unique_fields=("token",)):
            row = await self._add(EmailVerificationToken(email=email, token=token, expires_at=expires_at))
        return _token(row)

    async def get_unused_verification_token(self, token: str) -> Optional[VerificationTokenRecord]:
        async with self._errors("get_unused_verification_token"):
            result = await self.session.execute(
                select(EmailVerificationToken).where(
                    EmailVerificationToken.token == token,
                    EmailVerificationToken.used_at.is_(None),
                )
            )
            row = result.scalar_one_or_none()
        return _token(row) if row else None

    async def mark_verification_token_used(self, token_id: str, used_at: datetime) -> None:
        async with self._errors("mark_verification_token_used"):
            await self.session.execute(
                update(EmailVerificationToken)
                .where(EmailVerificationToken.id == token_id)
                .values(used_at=used_at)
            )
            await self.session.commit()

    async def delete_verification_tokens(self, email: str, *, keep_id: Optional[str] = None) -> int:
        statement = delete(EmailVerificationToken).where(EmailVerificationToken.email == email)
        if keep_id is not None:
            statement = statement.where(EmailVerificationToken.id != keep_id)
        async with self._errors("delete_verification_tokens"):
            result = await self.session.execute(statement)
            await self.session.commit()
        return result.rowcount

    async def purge_verification_tokens(self, now: datetime) -> int:
        async with self._errors("purge_verification_tokens"):
            result = await self.session.execute(
                delete(EmailVerificationToken).where(
                    or_(
                        EmailVerificationToken.used_at.is_not(None),
                        EmailVerificationToken.expires_at < now,
                    )
                )
            )
            await self.session.commit()
        return result.rowcount

    # =========================================================================
    # PASSWORD RESET TOKENS
    # =========================================================================

    async def create_password_reset_token(
        self,
        *,
        email: str,
        token: str,
        expires_at: datetime,
    ) -> PasswordResetTokenRecord:
        async with self._errors("create_password_reset_token", unique_fields=("token",)):
            row = await self._add(PasswordResetToken(email=email, token=token, expires_at=expires_at))
        return _reset_token(row)

    async def get_unused_password_reset_token(self, token: str) -> Optional[PasswordResetTokenRecord]:
        async with self._errors("get_unused_password_reset_token"):
            result = await self.session.execute(
                select(PasswordResetToken).where(
                    PasswordResetToken.token == token,
                    PasswordResetToken.used_at.is_(None),
                )
            )
            row = result.scalar_one_or_none()
        return _reset_token(row) if row else None

    async def mark_password_reset_token_used(self, token_id: str, used_at: datetime) -> None:
        async with self._errors("mark_password_reset_token_used"):
            await self.session.execute(
                update(PasswordResetToken)
                .where(PasswordResetToken.id == token_id)
                .values(used_at=used_at)
            )
            await self.session.commit()

    async def delete_password_reset_tokens(self, email: str, *, keep_id: Optional[str] = None) -> int:
        statement = delete(PasswordResetToken).where(PasswordResetToken.email == email)
        if keep_id is not None:
            statement = statement.where(PasswordResetToken.id != keep_id)
        async with self._errors("delete_password_reset_tokens"):
            result = await self.session.execute(statement)
            await self.session.commit()
        return result.rowcount

    async def purge_password_reset_tokens(self, now: datetime) -> int:
        async with self._errors("purge_password_reset_tokens"):
            result = await self.session.execute(
                delete(PasswordResetToken).where(
                    or_(
                        PasswordResetToken.used_at.is_not(None),
                        PasswordResetToken.expires_at < now,
                    )
                )
            )
            await self.session.commit()
        return result.rowcount

    # =========================================================================
    # SUPER ADMINS
    # =========================================================================

    async def get_super_admin(self, admin_id: str) -> Optional[SuperAdminRecord]:
        async with self._errors("get_super_admin"):
            row = await self.session.get(SuperAdmin, admin_id)
        return _admin(row) if row else None

    async def get_super_admin_by_email(self, email: str) -> Optional[SuperAdminRecord]:
        async with self._errors("get_super_admin_by_email"):
            result = await self.session.execute(select(SuperAdmin).where(SuperAdmin.email == email))
            row = result.scalar_one_or_none()
        return _admin(row) if row else None

    async def update_super_admin(self, admin_id: str, **fields: Any) -> None:
        async with self._errors("update_super_admin"):
            result = await self.session.execute(
                update(SuperAdmin).where(SuperAdmin.id == admin_id).values(**fields)
            )
            await self.session.commit()
        if result.rowcount == 0:
            raise RepositoryError(f"super admin {admin_id} not found", operation="update_super_admin")

    async def health_check(self) -> bool:
        try:
            await self.session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
