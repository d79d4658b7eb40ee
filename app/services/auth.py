"""
Owner and Super Admin Login

Checks credentials and mints the session tokens the access guard trusts.

Both flows answer 401 with the same message for an unknown email and a
wrong password. For super admins an unknown email still costs one bcrypt
check, so timing does not reveal which admin accounts exist.

Author: Khalil Bannouri
Version: 4.0.0
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.core.exceptions import (
    AuthenticationFailed,
    DependencyFailure,
    InvalidRequest,
    RepositoryError,
)
from app.repository.base import BaseTenantRepository, BusinessProfileRecord, SuperAdminRecord
from app.services.passwords import PasswordHasher
from app.services.sessions import SessionTokenService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerLogin:
    profile: BusinessProfileRecord
    session_token: str


@dataclass(frozen=True)
class SuperAdminLogin:
    admin: SuperAdminRecord
    session_token: str


def _credentials(email: Optional[str], password: Optional[str]) -> tuple[str, str]:
    email = (email or "").strip().lower()
    if not email or not password:
        raise InvalidRequest("Email and password are required")
    return email, password


class AuthService:
    """Credential checks for tenant owners and super admins."""

    def __init__(
        self,
        repository: BaseTenantRepository,
        hasher: PasswordHasher,
        sessions: SessionTokenService,
    ):
        self.repository = repository
        self.hasher = hasher
        self.sessions = sessions

    async def login_owner(self, email: Optional[str], password: Optional[str]) -> OwnerLogin:
        """
        Log a tenant owner in.

        Legacy SHA-256 hashes are replaced by a bcrypt hash on success.

        Raises:
            InvalidRequest: email or password missing
            AuthenticationFailed: unknown email or wrong password
            DependencyFailure: store unavailable
        """
        email, password = _credentials(email, password)

        try:
            profile = await self.repository.get_business_profile_by_email(email)
        except RepositoryError as e:
            raise DependencyFailure(f"profile lookup failed: {e}", step="login") from e

        if profile is None:
            await self.hasher.burn(password)
            logger.warning("Owner login failed: unknown email")
            raise AuthenticationFailed("unknown email")

        if not await self.hasher.verify(password, profile.password_hash):
            logger.warning(f"Owner login failed: wrong password for profile {profile.id}")
            raise AuthenticationFailed("wrong password")

        if self.hasher.needs_upgrade(profile.password_hash):
            await self._upgrade_owner_hash(profile, password)

        logger.info(f"Owner login successful: profile {profile.id} ({profile.tenant_slug})")
        return OwnerLogin(profile=profile, session_token=self.sessions.issue_owner_token(profile))

    async def _upgrade_owner_hash(self, profile: BusinessProfileRecord, password: str) -> None:
        try:
            await self.repository.update_business_profile(
                profile.id, password_hash=await self.hasher.hash(password)
            )
            logger.info(f"Upgraded legacy password hash for profile {profile.id}")
        except RepositoryError as e:
            logger.error(f"Password hash upgrade failed for profile {profile.id}: {e}")

    async def login_superadmin(self, email: Optional[str], password: Optional[str]) -> SuperAdminLogin:
        """
        Log a super admin in and record ``last_login``.

        Raises:
            InvalidRequest: email or password missing
            AuthenticationFailed: unknown, inactive or wrong password
            DependencyFailure: store unavailable
        """
        email, password = _credentials(email, password)

        try:
            admin = await self.repository.get_super_admin_by_email(email)
        except RepositoryError as e:
            raise DependencyFailure(f"super admin lookup failed: {e}", step="superadmin_login") from e

        if admin is None:
            await self.hasher.burn(password)
            valid = False
        else:
            valid = await self.hasher.verify(password, admin.password_hash)

        if admin is None or not valid or not admin.is_active:
            reason = "not_found" if admin is None else "wrong_password" if not valid else "inactive"
            logger.warning(f"Super admin login failed ({reason})")
            raise AuthenticationFailed(f"super admin login failed: {reason}")

        fields = {"last_login": datetime.now(timezone.utc)}
        if self.hasher.needs_upgrade(admin.password_hash):
            fields["password_hash"] = await self.hasher.hash(password)

        try:
            await self.repository.update_super_admin(admin.id, **fields)
        except RepositoryError as e:
            logger.error(f"Could not record login for super admin {admin.id}: {e}")

        logger.info(f"Super admin login successful: {admin.id}")
        return SuperAdminLogin(admin=admin, session_token=self.sessions.issue_superadmin_token(admin))
