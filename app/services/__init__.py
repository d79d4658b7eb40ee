"""
                        Services Module

Contains all business logic services. External providers follow the
hybrid architecture pattern: Mock (development) and Real (production).

Services:
    - slugs: Tenant slug allocation
    - provisioning: Registration saga with compensation
    - access: Per-request tenant access guard
    - auth / sessions / passwords: Login and signed session tokens
    - verification: Email confirmation links
    - password_reset: Forgotten-password links
    - rate_limit: Redis per-IP request limits
    - notifications: SendGrid email delivery
"""

from app.services.access import AccessDecision, AccessGuard, CallerIdentity, DenialReason
from app.services.provisioning import (
    ProvisioningConfig,
    ProvisioningOrchestrator,
    RegistrationRequest,
    RegistrationResult,
    TenantSummary,
)
from app.services.slugs import SlugAllocator

__all__ = [
    "AccessDecision",
    "AccessGuard",
    "CallerIdentity",
    "DenialReason",
    "ProvisioningConfig",
    "ProvisioningOrchestrator",
    "RegistrationRequest",
    "RegistrationResult",
    "TenantSummary",
    "SlugAllocator",
]
