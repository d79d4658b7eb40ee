"""
In-Memory Tenant Repository

Dict-backed store with the same uniqueness rules as the PostgreSQL schema.
Used with STORE_BACKEND=memory for local runs without a database, and by
the test-suite.

Like the other mock services it can simulate trouble:
    - latency: seconds awaited before every operation (0 still yields
      to the event loop, so concurrent registrations interleave)
    - fail(): make a named operation raise a given exception

Author: Khalil Bannouri
Version: 4.0.0
"""

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from app.core.exceptions import DuplicateRecordError, RepositoryError
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


class InMemoryTenantRepository(BaseTenantRepository):
    """In-process tenant store."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.tenants: dict[str, TenantRecord] = {}
        self.profiles: dict[str, BusinessProfileRecord] = {}
        self.settings: dict[str, TenantSettingsRecord] = {}
        self.subscriptions: dict[str, SubscriptionRecord] = {}
        self.tokens: dict[str, VerificationTokenRecord] = {}
        self.reset_tokens: dict[str, PasswordResetTokenRecord] = {}
        self.super_admins: dict[str, SuperAdminRecord] = {}
        self.calls: list[str] = []
        self._failures: dict[str, list[Any]] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    # =========================================================================
    # SIMULATION HELPERS
    # =========================================================================

    def fail(self, operation: str, error: Exception, times: Optional[int] = None) -> None:
        """
        Make ``operation`` raise ``error``.

        Args:
            operation: Repository method name (e.g. "create_business_profile")
            error: Exception instance to raise
            times: Number of calls to fail, None for every call
        """
        self._failures[operation] = [error, times]

    def clear_failures(self) -> None:
        self._failures.clear()

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        await asyncio.sleep(self.latency)

        failure = self._failures.get(operation)
        if failure is None:
            return
        error, remaining = failure
        if remaining is not None:
            if remaining <= 1:
                del self._failures[operation]
            else:
                failure[1] = remaining - 1
        logger.debug(f"Simulated failure in {operation}: {error!r}")
        raise error

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def add_super_admin(
        self,
        *,
        email: str,
        password_hash: str,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> SuperAdminRecord:
        """Seed an administrator record."""
        admin = SuperAdminRecord(
            id=self._new_id(),
            email=email.lower(),
            password_hash=password_hash,
            name=name,
            is_active=is_active,
        )
        self.super_admins[admin.id] = admin
        return admin

    # =========================================================================
    # TENANTS
    # =========================================================================

    async def get_tenant_by_slug(self, slug: str) -> Optional[TenantRecord]:
        await self._enter("get_tenant_by_slug")
        return next((t for t in self.tenants.values() if t.slug == slug), None)

    async def get_tenant_by_email(self, email: str) -> Optional[TenantRecord]:
        await self._enter("get_tenant_by_email")
        return next((t for t in self.tenants.values() if t.email == email), None)

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
        await self._enter("create_tenant")
        for existing in self.tenants.values():
            if existing.slug == slug:
                raise DuplicateRecordError(f"tenant slug {slug!r} exists", field="slug", operation="create_tenant")
            if existing.email == email:
                raise DuplicateRecordError("tenant email exists", field="email", operation="create_tenant")

        tenant = TenantRecord(
            id=self._new_id(),
            slug=slug,
            name=name,
            email=email,
            phone=phone,
            plan=plan,
            subscription_status=subscription_status,
            trial_ends_at=trial_ends_at,
            created_at=datetime.now().astimezone(),
        )
        self.tenants[tenant.id] = tenant
        return replace(tenant)

    async def delete_tenant(self, tenant_id: str) -> None:
        await self._enter("delete_tenant")
        self.tenants.pop(tenant_id, None)

    async def list_orphan_tenants(self) -> list[TenantRecord]:
        await self._enter("list_orphan_tenants")
        owned = {p.tenant_slug for p in self.profiles.values()}
        return [replace(t) for t in self.tenants.values() if t.slug not in owned]

    # =========================================================================
    # BUSINESS PROFILES
    # =========================================================================

    async def get_business_profile(self, profile_id: str) -> Optional[BusinessProfileRecord]:
        await self._enter("get_business_profile")
        profile = self.profiles.get(profile_id)
        return replace(profile) if profile else None

    async def get_business_profile_by_email(self, email: str) -> Optional[BusinessProfileRecord]:
        await self._enter("get_business_profile_by_email")
        profile = next((p for p in self.profiles.values() if p.email == email), None)
        return replace(profile) if profile else None

    async def create_business_profile(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        phone: str,
        tenant_slug: str,
    ) -> BusinessProfileRecord:
        await self._enter("create_business_profile")
        for existing in self.profiles.values():
            if existing.email == email:
                raise DuplicateRecordError(
                    "profile email exists", field="email", operation="create_business_profile"
                )
            if existing.tenant_slug == tenant_slug:
                raise DuplicateRecordError(
                    f"profile for {tenant_slug!r} exists",
                    field="tenant_slug",
                    operation="create_business_profile",
                )

        profile = BusinessProfileRecord(
            id=self._new_id(),
            name=name,
            email=email,
            password_hash=password_hash,
            phone=phone,
            tenant_slug=tenant_slug,
        )
        self.profiles[profile.id] = profile
        return replace(profile)

    async def update_business_profile(self, profile_id: str, **fields: Any) -> None:
        await self._enter("update_business_profile")
        profile = self.profiles.get(profile_id)
        if profile is None:
            raise RepositoryError(f"profile {profile_id} not found", operation="update_business_profile")
        self.profiles[profile_id] = replace(profile, **fields)

    async def mark_email_verified(self, email: str, verified_at: datetime) -> int:
        await self._enter("mark_email_verified")
        count = 0
        for profile_id, profile in list(self.profiles.items()):
            if profile.email == email:
                self.profiles[profile_id] = replace(
                    profile, email_verified=True, email_verified_at=verified_at
                )
                count += 1
        return count

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
        await self._enter("create_tenant_settings")
        if any(s.tenant_slug == tenant_slug for s in self.settings.values()):
            raise DuplicateRecordError(
                "settings exist", field="tenant_slug", operation="create_tenant_settings"
            )
        record = TenantSettingsRecord(
            id=self._new_id(),
            tenant_slug=tenant_slug,
            business_name=business_name,
            email=email,
            phone=phone,
            primary_color=primary_color,
            secondary_color=secondary_color,
        )
        self.settings[record.id] = record
        return replace(record)

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
        await self._enter("create_subscription")
        record = SubscriptionRecord(
            id=self._new_id(),
            tenant_slug=tenant_slug,
            plan=plan,
            status=status,
            price_monthly=price_monthly,
            trial_started_at=trial_started_at,
            trial_ends_at=trial_ends_at,
        )
        self.subscriptions[record.id] = record
        return replace(record)

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
        await self._enter("create_verification_token")
        if any(t.token == token for t in self.tokens.values()):
            raise DuplicateRecordError(
                "token exists", field="token", operation="create_verification_token"
            )
        record = VerificationTokenRecord(
            id=self._new_id(), email=email, token=token, expires_at=expires_at
        )
        self.tokens[record.id] = record
        return replace(record)

    async def get_unused_verification_token(self, token: str) -> Optional[VerificationTokenRecord]:
        await self._enter("get_unused_verification_token")
        record = next(
            (t for t in self.tokens.values() if t.token == token and t.used_at is None), None
        )
        return replace(record) if record else None

    async def mark_verification_token_used(self, token_id: str, used_at: datetime) -> None:
        await self._enter("mark_verification_token_used")
        record = self.tokens.get(token_id)
        if record is not None:
            self.tokens[token_id] = replace(record, used_at=used_at)

    async def delete_verification_tokens(self, email: str, *, keep_id: Optional[str] = None) -> int:
        await self._enter("delete_verification_tokens")
        doomed = [
            token_id for token_id, t in self.tokens.items()
            if t.email == email and token_id != keep_id
        ]
        for token_id in doomed:
            del self.tokens[token_id]
        return len(doomed)

    async def purge_verification_tokens(self, now: datetime) -> int:
        await self._enter("purge_verification_tokens")
        doomed = [
            token_id for token_id, t in self.tokens.items()
            if t.used_at is not None or t.expires_at < now
        ]
        for token_id in doomed:
            del self.tokens[token_id]
        return len(doomed)

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
        await self._enter("create_password_reset_token")
        if any(t.token == token for t in self.reset_tokens.values()):
            raise DuplicateRecordError(
                "token exists", field="token", operation="create_password_reset_token"
            )
        record = PasswordResetTokenRecord(
            id=self._new_id(), email=email, token=token, expires_at=expires_at
        )
        self.reset_tokens[record.id] = record
        return replace(record)

    async def get_unused_password_reset_token(self, token: str) -> Optional[PasswordResetTokenRecord]:
        await self._enter("get_unused_password_reset_token")
        record = next(
            (t for t in self.reset_tokens.values() if t.token == token and t.used_at is None), None
        )
        return replace(record) if record else None

    async def mark_password_reset_token_used(self, token_id: str, used_at: datetime) -> None:
        await self._enter("mark_password_reset_token_used")
        record = self.reset_tokens.get(token_id)
        if record is not None:
            self.reset_tokens[token_id] = replace(record, used_at=used_at)

    async def delete_password_reset_tokens(self, email: str, *, keep_id: Optional[str] = None) -> int:
        await self._enter("delete_password_reset_tokens")
        doomed = [
            token_id for token_id, t in self.reset_tokens.items()
            if t.email == email and token_id != keep_id
        ]
        for token_id in doomed:
            del self.reset_tokens[token_id]
        return len(doomed)

    async def purge_password_reset_tokens(self, now: datetime) -> int:
        await self._enter("purge_password_reset_tokens")
        doomed = [
            token_id for token_id, t in self.reset_tokens.items()
            if t.used_at is not None or t.expires_at < now
        ]
        for token_id in doomed:
            del self.reset_tokens[token_id]
        return len(doomed)

    # =========================================================================
    # SUPER ADMINS
    # =========================================================================

    async def get_super_admin(self, admin_id: str) -> Optional[SuperAdminRecord]:
        await self._enter("get_super_admin")
        admin = self.super_admins.get(admin_id)
        return replace(admin) if admin else None

    async def get_super_admin_by_email(self, email: str) -> Optional[SuperAdminRecord]:
        await self._enter("get_super_admin_by_email")
        admin = next((a for a in self.super_admins.values() if a.email == email), None)
        return replace(admin) if admin else None

    async def update_super_admin(self, admin_id: str, **fields: Any) -> None:
        await self._enter("update_super_admin")
        admin = self.super_admins.get(admin_id)
        if admin is None:
            raise RepositoryError(f"super admin {admin_id} not found", operation="update_super_admin")
        self.super_admins[admin_id] = replace(admin, **fields)

    async def health_check(self) -> bool:
        """Memory store is always reachable."""
        return True
