"""
Password Reset

Forgotten-password flow for business owners.

Requesting a reset always answers the same message, known address or
not. For a known address every pending reset token is replaced by a
fresh one (32 random bytes, hex, valid for an hour) and the link is
mailed. Resetting consumes the token, stores a new bcrypt hash and
invalidates every other reset token of that address.

Author: Khalil Bannouri
Version: 4.0.0
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.exceptions import (
    DependencyFailure,
    InvalidRequest,
    PasswordResetTokenError,
    PasswordResetTokenExpired,
    RepositoryError,
)
from app.repository.base import BaseTenantRepository, PasswordResetTokenRecord
from app.services.notifications.base import BaseNotificationService
from app.services.passwords import PasswordHasher
from app.services.provisioning import MIN_PASSWORD_LENGTH

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If this email address is known to us, you will receive a link to reset your password."
RESET_DONE_MESSAGE = "Your password has been changed. You can log in now."


class PasswordResetService:
    """Issue and redeem password reset links."""

    def __init__(
        self,
        repository: BaseTenantRepository,
        hasher: PasswordHasher,
        notifier: BaseNotificationService,
        token_ttl: timedelta = timedelta(hours=1),
        token_bytes: int = 32,
        reset_url_base: str = "http://localhost:8001/login/reset-password",
    ):
        self.repository = repository
        self.hasher = hasher
        self.notifier = notifier
        self.token_ttl = token_ttl
        self.token_bytes = token_bytes
        self.reset_url_base = reset_url_base

    async def request_reset(self, email: Optional[str]) -> str:
        """
        Mail a reset link to ``email`` if it belongs to an owner.

        Raises:
            InvalidRequest: no email given
            DependencyFailure: the owner lookup failed
        """
        email = (email or "").strip().lower()
        if not email:
            raise InvalidRequest("Email is required")

        try:
            profile = await self.repository.get_business_profile_by_email(email)
        except RepositoryError as e:
            raise DependencyFailure(f"profile lookup failed: {e}", step="forgot_password") from e

        if profile is None:
            logger.info("Password reset requested for unknown email")
            return RESET_REQUESTED_MESSAGE

        token = secrets.token_hex(self.token_bytes)
        try:
            await self.repository.delete_password_reset_tokens(email)
            await self.repository.create_password_reset_token(
                email=email,
                token=token,
                expires_at=datetime.now(timezone.utc) + self.token_ttl,
            )
        except RepositoryError as e:
            logger.error(f"Password reset token for {email} not stored: {e}")
            return RESET_REQUESTED_MESSAGE

        try:
            result = await self.notifier.send_password_reset_email(
                to_email=email,
                name=profile.name or "there",
                reset_url=f"{self.reset_url_base}?token={token}",
            )
        except Exception as e:
            logger.warning(f"Password reset email to {email} failed: {e}")
            return RESET_REQUESTED_MESSAGE

        if not result.success:
            logger.warning(f"Password reset email to {email} not sent: {result.error_message}")
        return RESET_REQUESTED_MESSAGE

    async def check(self, token: Optional[str], now: Optional[datetime] = None) -> None:
        """
        Tell whether ``token`` can still be redeemed, without consuming it.

        Raises:
            PasswordResetTokenError: token missing, unknown or already used
            PasswordResetTokenExpired: token older than its TTL
        """
        await self._usable(token, now or datetime.now(timezone.utc))

    async def reset(self, token: Optional[str], password: Optional[str], now: Optional[datetime] = None) -> str:
        """
        Redeem ``token`` and set a new password for its owner.

        Raises:
            InvalidRequest: token or password missing, password too short
            PasswordResetTokenError: token unknown, used or without an owner
            PasswordResetTokenExpired: token older than its TTL
            DependencyFailure: store or hashing failure
        """
        if not token or not password:
            raise InvalidRequest("Token and password are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        now = now or datetime.now(timezone.utc)
        record = await self._usable(token, now, consume_expired=True)

        try:
            profile = await self.repository.get_business_profile_by_email(record.email)
        except RepositoryError as e:
            raise DependencyFailure(f"profile lookup failed: {e}", step="reset_password") from e
        if profile is None:
            raise PasswordResetTokenError("reset token has no owner")

        try:
            password_hash = await self.hasher.hash(password)
        except ValueError as e:
            raise DependencyFailure("password hashing failed", step="reset_password") from e

        try:
            await self.repository.update_business_profile(profile.id, password_hash=password_hash)
            await self.repository.mark_password_reset_token_used(record.id, now)
            removed = await self.repository.delete_password_reset_tokens(record.email, keep_id=record.id)
        except RepositoryError as e:
            raise DependencyFailure(f"password reset failed: {e}", step="reset_password") from e

        logger.info(f"Password reset for {record.email} ({removed} other reset tokens removed)")
        return RESET_DONE_MESSAGE

    async def _usable(
        self, token: Optional[str], now: datetime, consume_expired: bool = False
    ) -> PasswordResetTokenRecord:
        if not token:
            raise PasswordResetTokenError("missing reset token")

        try:
            record = await self.repository.get_unused_password_reset_token(token)
            if record is None:
                raise PasswordResetTokenError("unknown or used reset token")

            if record.expires_at < now:
                if consume_expired:
                    await self.repository.mark_password_reset_token_used(record.id, now)
                logger.info(f"Expired password reset token for {record.email} rejected")
                raise PasswordResetTokenExpired("reset token expired")
        except RepositoryError as e:
            raise DependencyFailure(f"reset token lookup failed: {e}", step="reset_password") from e

        return record
