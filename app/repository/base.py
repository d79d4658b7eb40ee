"""
Tenant Repository Abstract Base Class

Defines the narrow store interface the provisioning saga and the access
guard consume. The hosted store gives no multi-row transaction guarantee,
so every write here is independent: callers compensate, the store does
not roll back for them.

Implementations:
    - SqlAlchemyTenantRepository: PostgreSQL via async SQLAlchemy
    - InMemoryTenantRepository: dict-backed store for development and tests

Both raise:
    - DuplicateRecordError when a uniqueness constraint rejects a write
    - RepositoryError for any other store failure

"Not found" is never an error: lookups return None.

Author: Khalil Bannouri
Version: 4.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class TenantRecord:
    id: str
    slug: str
    name: str
    email: str
    phone: str
    plan: str = "starter"
    subscription_status: str = "trial"
    trial_ends_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class BusinessProfileRecord:
    id: str
    name: str
    email: str
    password_hash: str
    phone: str
    tenant_slug: str
    email_verified: bool = False
    email_verified_at: Optional[datetime] = None


@dataclass
class TenantSettingsRecord:
    id: str
    tenant_slug: str
    business_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    primary_color: str = "#FF6B35"
    secondary_color: str = "#1a1a2e"


@dataclass
class SubscriptionRecord:
    id: str
    tenant_slug: str
    plan: str
    status: str
    price_monthly: float
    trial_started_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None


@dataclass
class VerificationTokenRecord:
    id: str
    email: str
    token: str
    expires_at: datetime
    used_at: Optional[datetime] = None


@dataclass
class PasswordResetTokenRecord:
    id: str
    email: str
    token: str
    expires_at: datetime
    used_at: Optional[datetime] = None


@dataclass
class SuperAdminRecord:
    id: str
    email: str
    password_hash: str
    name: Optional[str] = None
    is_active: bool = True
    last_login: Optional[datetime] = None


# =============================================================================
# REPOSITORY INTERFACE
# =============================================================================

class BaseTenantRepository(ABC):
    """Abstract base class for tenant stores."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the store name (e.g. "memory", "postgresql")."""
        pass

    # -------------------------------------------------------------------------
    # Tenants
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_tenant_by_slug(self, slug: str) -> Optional[TenantRecord]:
        pass

    @abstractmethod
    async def get_tenant_by_email(self, email: str) -> Optional[TenantRecord]:
        """Exact match; callers pass the lower-cased address."""
        pass

    @abstractmethod
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
        pass

    @abstractmethod
    async def delete_tenant(self, tenant_id: str) -> None:
        pass

    @abstractmethod
    async def list_orphan_tenants(self) -> list[TenantRecord]:
        """Tenants that no business profile references."""
        pass

    # -------------------------------------------------------------------------
    # Business profiles
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_business_profile(self, profile_id: str) -> Optional[BusinessProfileRecord]:
        pass

    @abstractmethod
    async def get_business_profile_by_email(self, email: str) -> Optional[BusinessProfileRecord]:
        pass

    @abstractmethod
    async def create_business_profile(
        self,
        *,
        name: str,
        email: str,
        password_hash: str,
        phone: str,
        tenant_slug: str,
    ) -> BusinessProfileRecord:
        pass

    @abstractmethod
    async def update_business_profile(self, profile_id: str, **fields: Any) -> None:
        pass

    @abstractmethod
    async def mark_email_verified(self, email: str, verified_at: datetime) -> int:
        """Flag every profile with this email as verified; returns row count."""
        pass

    # -------------------------------------------------------------------------
    # Periphery records
    # -------------------------------------------------------------------------

    @abstractmethod
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
        pass

    @abstractmethod
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
        pass

    # -------------------------------------------------------------------------
    # Email verification tokens
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_verification_token(
        self,
        *,
        email: str,
        token: str,
        expires_at: datetime,
    ) -> VerificationTokenRecord:
        pass

    @abstractmethod
    async def get_unused_verification_token(self, token: str) -> Optional[VerificationTokenRecord]:
        pass

    @abstractmethod
    async def mark_verification_token_used(self, token_id: str, used_at: datetime) -> None:
        pass

    @abstractmethod
    async def delete_verification_tokens(self, email: str, *, keep_id: Optional[str] = None) -> int:
        pass

    @abstractmethod
    async def purge_verification_tokens(self, now: datetime) -> int:
        """Delete tokens that are used or past expiry; returns row count."""
        pass

    # -------------------------------------------------------------------------
    # Password reset tokens
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_password_reset_token(
        self,
        *,
        email: str,
        token: str,
        expires_at: datetime,
    ) -> PasswordResetTokenRecord:
        pass

    @abstractmethod
    async def get_unused_password_reset_token(self, token: str) -> Optional[PasswordResetTokenRecord]:
        pass

    @abstractmethod
    async def mark_password_reset_token_used(self, token_id: str, used_at: datetime) -> None:
        pass

    @abstractmethod
    async def delete_password_reset_tokens(self, email: str, *, keep_id: Optional[str] = None) -> int:
        pass

    @abstractmethod
    async def purge_password_reset_tokens(self, now: datetime) -> int:
        """Delete reset tokens that are used or past expiry; returns row count."""
        pass

    # -------------------------------------------------------------------------
    # Super admins
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_super_admin(self, admin_id: str) -> Optional[SuperAdminRecord]:
        pass

    @abstractmethod
    async def get_super_admin_by_email(self, email: str) -> Optional[SuperAdminRecord]:
        pass

    @abstractmethod
    async def update_super_admin(self, admin_id: str, **fields: Any) -> None:
        pass

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    @abstractmethod
    async def health_check(self) -> bool:
        """Check store connectivity."""
        pass
