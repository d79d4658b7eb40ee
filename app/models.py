"""
SQLAlchemy Database Models

Tenant onboarding tables for the multi-tenant ordering platform:
- tenants: one row per onboarded business
- business_profiles: owner login record, one per tenant
- tenant_settings: display defaults (name, contact, theme colors)
- subscriptions: billing state mirror
- email_verification_tokens: one-shot email confirmation tokens
- password_reset_tokens: one-shot password reset tokens
- super_admins: platform operators with global tenant access

Uniqueness lives in the database (slug, emails, token). The provisioning
saga relies on these constraints to detect concurrent registrations.

Author: Khalil Bannouri
Version: 4.0.0
"""

import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class SubscriptionStatus(str, enum.Enum):
    """Billing lifecycle of a tenant."""
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Plan(str, enum.Enum):
    """Commercial plans."""
    STARTER = "starter"
    PRO = "pro"


class Tenant(Base):
    """
    Identity record of an onboarded business.

    Created first during registration; deleted only as the compensating
    action when the business profile cannot be created.
    """
    __tablename__ = "tenants"
    __table_args__ = (
        UniqueConstraint("slug", name="uq_tenants_slug"),
        UniqueConstraint("email", name="uq_tenants_email"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(100), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(40), nullable=False)
    plan = Column(Enum(Plan), default=Plan.STARTER, nullable=False)
    subscription_status = Column(
        Enum(SubscriptionStatus),
        default=SubscriptionStatus.TRIAL,
        nullable=False,
    )
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Tenant {self.slug} - {self.subscription_status.value}>"


class BusinessProfile(Base):
    """Login record of a tenant's owner."""
    __tablename__ = "business_profiles"
    __table_args__ = (
        UniqueConstraint("email", name="uq_business_profiles_email"),
        UniqueConstraint("tenant_slug", name="uq_business_profiles_tenant_slug"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(40), nullable=False)
    tenant_slug = Column(String(100), ForeignKey("tenants.slug"), nullable=False)

    email_verified = Column(Boolean, default=False, nullable=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<BusinessProfile {self.email} -> {self.tenant_slug}>"


class TenantSettings(Base):
    """Display defaults. Missing rows fall back to defaults downstream."""
    __tablename__ = "tenant_settings"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_slug = Column(String(100), nullable=False, unique=True, index=True)
    business_name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(40), nullable=True)
    primary_color = Column(String(20), default="#FF6B35")
    secondary_color = Column(String(20), default="#1a1a2e")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Subscription(Base):
    """Billing state mirror, reconstructable by an operator."""
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_slug = Column(String(100), nullable=False, index=True)
    plan = Column(Enum(Plan), default=Plan.STARTER, nullable=False)
    status = Column(Enum(SubscriptionStatus), default=SubscriptionStatus.TRIAL, nullable=False)
    price_monthly = Column(Float, nullable=False)
    trial_started_at = Column(DateTime(timezone=True), nullable=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class EmailVerificationToken(Base):
    """One-shot email confirmation token (consumed or expires)."""
    __tablename__ = "email_verification_tokens"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, index=True)
    token = Column(String(128), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PasswordResetToken(Base):
    """One-shot password reset token (consumed or expires)."""
    __tablename__ = "password_reset_tokens"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, index=True)
    token = Column(String(128), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SuperAdmin(Base):
    """Platform operator allowed to act on any tenant while active."""
    __tablename__ = "super_admins"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(200), nullable=True)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<SuperAdmin {self.email} active={self.is_active}>"
