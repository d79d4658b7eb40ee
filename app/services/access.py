"""
Tenant Access Guard

Decides, for every tenant-scoped request, whether the caller may touch the
requested tenant's data. Two capability paths, tried in order:

    1. Tenant owner: business profile id + email. The profile must exist,
       its email must match, and its tenant_slug must equal the requested
       slug. Any mismatch denies; there are no partial grants.
    2. Super admin: admin id + email. The admin record must exist, match
       the email and be active. Grants access to every tenant.

The guard fails closed. A store error during lookup is a denial with its
own reason code, never a grant. Denial reasons go to the logs only; the
caller always sees the same generic message.

The guard holds no state between calls and is safe to run concurrently.

Author: Khalil Bannouri
Version: 4.0.0
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

from app.core.exceptions import InvalidSessionToken, RepositoryError
from app.repository.base import BaseTenantRepository
from app.services.sessions import SessionRole, SessionTokenService

logger = logging.getLogger(__name__)

GENERIC_DENIAL_MESSAGE = "Not authorized or session invalid"

# Legacy identity headers, honoured only with TRUST_IDENTITY_HEADERS=true
HEADER_BUSINESS_ID = "x-business-id"
HEADER_AUTH_EMAIL = "x-auth-email"
HEADER_SUPERADMIN_ID = "x-superadmin-id"
HEADER_SUPERADMIN_EMAIL = "x-superadmin-email"


class DenialReason(str, enum.Enum):
    """Why access was refused. For logs only."""
    MISSING_CLAIMS = "missing_claims"
    UNKNOWN_IDENTITY = "unknown_identity"
    EMAIL_MISMATCH = "email_mismatch"
    TENANT_MISMATCH = "tenant_mismatch"
    INACTIVE_ADMIN = "inactive_admin"
    LOOKUP_FAILED = "lookup_failed"


@dataclass(frozen=True)
class CallerIdentity:
    """Identity claims presented with a request."""
    business_id: Optional[str] = None
    auth_email: Optional[str] = None
    superadmin_id: Optional[str] = None
    superadmin_email: Optional[str] = None

    @property
    def has_owner_claims(self) -> bool:
        return bool(self.business_id) and bool(self.auth_email)

    @property
    def has_superadmin_claims(self) -> bool:
        return bool(self.superadmin_id) and bool(self.superadmin_email)


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a single authorization check (never persisted)."""
    authorized: bool
    tenant_slug: str
    actor_id: Optional[str] = None
    is_super_admin: bool = False
    denial_reason: Optional[DenialReason] = None

    @property
    def public_message(self) -> Optional[str]:
        return None if self.authorized else GENERIC_DENIAL_MESSAGE


def _same_email(stored: str, supplied: str) -> bool:
    return stored.strip().lower() == supplied.strip().lower()


class AccessGuard:
    """Per-request tenant authorization."""

    def __init__(self, repository: BaseTenantRepository):
        self.repository = repository

    async def authorize(self, identity: CallerIdentity, requested_tenant_slug: str) -> AccessDecision:
        """
        Authorize ``identity`` for ``requested_tenant_slug``.

        The owner path runs first; the super admin path only runs when the
        owner path denies.
        """
        request_id = uuid.uuid4().hex[:12]

        owner = await self._owner_path(identity, requested_tenant_slug, request_id)
        if owner.authorized:
            logger.debug(f"[{request_id}] Tenant access granted to owner {owner.actor_id} for {requested_tenant_slug}")
            return owner

        admin = await self._superadmin_path(identity, requested_tenant_slug, request_id)
        if admin.authorized:
            logger.info(
                f"[{request_id}] Super admin {admin.actor_id} accessing tenant {requested_tenant_slug}"
            )
            return admin

        # Report the path the caller actually tried
        decision = admin if owner.denial_reason == DenialReason.MISSING_CLAIMS else owner
        logger.warning(
            f"[{request_id}] Tenant access denied for {requested_tenant_slug}: {decision.denial_reason.value}"
        )
        return decision

    async def _owner_path(self, identity: CallerIdentity, slug: str, request_id: str) -> AccessDecision:
        if not identity.has_owner_claims:
            return AccessDecision(False, slug, denial_reason=DenialReason.MISSING_CLAIMS)

        try:
            profile = await self.repository.get_business_profile(identity.business_id)
        except RepositoryError as e:
            logger.error(f"[{request_id}] Profile lookup failed for {identity.business_id}: {e}")
            return AccessDecision(False, slug, denial_reason=DenialReason.LOOKUP_FAILED)

        if profile is None:
            return AccessDecision(False, slug, denial_reason=DenialReason.UNKNOWN_IDENTITY)

        if not _same_email(profile.email, identity.auth_email):
            return AccessDecision(False, slug, actor_id=profile.id, denial_reason=DenialReason.EMAIL_MISMATCH)

        if profile.tenant_slug != slug:
            logger.debug(
                f"[{request_id}] Profile {profile.id} owns {profile.tenant_slug}, requested {slug}"
            )
            return AccessDecision(False, slug, actor_id=profile.id, denial_reason=DenialReason.TENANT_MISMATCH)

        return AccessDecision(True, slug, actor_id=profile.id)

    async def _superadmin_path(self, identity: CallerIdentity, slug: str, request_id: str) -> AccessDecision:
        if not identity.has_superadmin_claims:
            return AccessDecision(False, slug, denial_reason=DenialReason.MISSING_CLAIMS)

        try:
            admin = await self.repository.get_super_admin(identity.superadmin_id)
        except RepositoryError as e:
            logger.error(f"[{request_id}] Super admin lookup failed for {identity.superadmin_id}: {e}")
            return AccessDecision(False, slug, denial_reason=DenialReason.LOOKUP_FAILED)

        if admin is None:
            return AccessDecision(False, slug, denial_reason=DenialReason.UNKNOWN_IDENTITY)

        if not _same_email(admin.email, identity.superadmin_email):
            return AccessDecision(False, slug, actor_id=admin.id, denial_reason=DenialReason.EMAIL_MISMATCH)

        if not admin.is_active:
            return AccessDecision(False, slug, actor_id=admin.id, denial_reason=DenialReason.INACTIVE_ADMIN)

        return AccessDecision(True, slug, actor_id=admin.id, is_super_admin=True)


# =============================================================================
# IDENTITY EXTRACTION
# =============================================================================

def _bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    authorization = headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def identity_from_headers(
    headers: Mapping[str, str],
    sessions: SessionTokenService,
    trust_identity_headers: bool = False,
) -> CallerIdentity:
    """
    Build the caller identity for a request.

    A verified ``Authorization: Bearer`` session token is the only evidence
    accepted by default. The raw x-business-id / x-auth-email and
    x-superadmin-id / x-superadmin-email pairs are read only when
    ``trust_identity_headers`` is on. A bad token yields an empty identity,
    which the guard denies without touching the store.
    """
    token = _bearer_token(headers)
    if token is not None:
        try:
            claims = sessions.decode(token)
        except InvalidSessionToken as e:
            logger.warning(f"Rejected session token: {e}")
            return CallerIdentity()

        if claims.role == SessionRole.SUPERADMIN:
            return CallerIdentity(superadmin_id=claims.subject, superadmin_email=claims.email)
        return CallerIdentity(business_id=claims.subject, auth_email=claims.email)

    if trust_identity_headers:
        return CallerIdentity(
            business_id=headers.get(HEADER_BUSINESS_ID) or None,
            auth_email=headers.get(HEADER_AUTH_EMAIL) or None,
            superadmin_id=headers.get(HEADER_SUPERADMIN_ID) or None,
            superadmin_email=headers.get(HEADER_SUPERADMIN_EMAIL) or None,
        )

    return CallerIdentity()
