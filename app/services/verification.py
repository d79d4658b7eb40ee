"""
Email Verification

Single-use confirmation links for business profile emails.

Tokens are 32 random bytes (hex) valid for 24 hours. Verifying consumes
the token and deletes every other token issued for the same address.
Resending never reveals whether an address is registered.

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
    RepositoryError,
    VerificationTokenError,
    VerificationTokenExpired,
)
from app.repository.base import BaseTenantRepository
from app.services.notifications.base import BaseNotificationService, NotificationResult

logger = logging.getLogger(__name__)

VERIFIED_MESSAGE = "Your email address is confirmed. You can log in now."
RESEND_GENERIC_MESSAGE = "If this email address is known to us, you will receive a confirmation email."
RESEND_ALREADY_VERIFIED_MESSAGE = "Your email address is already confirmed. You can log in."
RESEND_SENT_MESSAGE = "Confirmation email sent!"


async def issue_verification_token(
    repository: BaseTenantRepository,
    notifier: BaseNotificationService,
    *,
    email: str,
    name: str,
    token_ttl: timedelta,
    token_bytes: int,
    verify_url_base: str,
) -> NotificationResult:
    """
    Store a fresh token for ``email`` and mail the confirmation link.

    Store errors propagate; a failed send comes back as an unsuccessful
    NotificationResult.
    """
    token = secrets.token_hex(token_bytes)
    await repository.create_verification_token(
        email=email,
        token=token,
        expires_at=datetime.now(timezone.utc) + token_ttl,
    )

    result = await notifier.send_verification_email(
        to_email=email,
        name=name,
        verify_url=f"{verify_url_base}?token={token}",
    )
    if not result.success:
        logger.warning(f"Verification email to {email} not sent: {result.error_message}")
    return result


class EmailVerificationService:
    """Verify and resend email confirmation links."""

    def __init__(
        self,
        repository: BaseTenantRepository,
        notifier: BaseNotificationService,
        token_ttl: timedelta = timedelta(hours=24),
        token_bytes: int = 32,
        verify_url_base: str = "http://localhost:8001/auth/verify-email",
    ):
        self.repository = repository
        self.notifier = notifier
        self.token_ttl = token_ttl
        self.token_bytes = token_bytes
        self.verify_url_base = verify_url_base

    async def verify(self, token: Optional[str], now: Optional[datetime] = None) -> str:
        """
        Consume a verification token and mark the owner's email verified.

        Raises:
            VerificationTokenError: token missing, unknown or already used
            VerificationTokenExpired: token older than its TTL
            DependencyFailure: store unavailable
        """
        if not token:
            raise VerificationTokenError("missing verification token")

        now = now or datetime.now(timezone.utc)

        try:
            record = await self.repository.get_unused_verification_token(token)
            if record is None:
                raise VerificationTokenError("unknown or used verification token")

            if record.expires_at < now:
                await self.repository.mark_verification_token_used(record.id, now)
                logger.info(f"Expired verification token for {record.email} rejected")
                raise VerificationTokenExpired("verification token expired")

            await self.repository.mark_email_verified(record.email, now)
            await self.repository.mark_verification_token_used(record.id, now)
            removed = await self.repository.delete_verification_tokens(record.email, keep_id=record.id)
        except RepositoryError as e:
            raise DependencyFailure(f"verification failed: {e}", step="verify_email") from e

        logger.info(f"Email {record.email} verified ({removed} stale tokens removed)")
        return VERIFIED_MESSAGE

    async def resend(self, email: Optional[str]) -> str:
        """
        Replace the pending tokens of ``email`` and send a new link.

        Unknown addresses get the same answer as known ones.
        """
        email = (email or "").strip().lower()
        if not email:
            raise InvalidRequest("Email is required")

        try:
            profile = await self.repository.get_business_profile_by_email(email)
            if profile is None:
                logger.info("Verification resend requested for unknown email")
                return RESEND_GENERIC_MESSAGE

            if profile.email_verified:
                return RESEND_ALREADY_VERIFIED_MESSAGE

            await self.repository.delete_verification_tokens(email)
            await issue_verification_token(
                self.repository,
                self.notifier,
                email=email,
                name=profile.name or "there",
                token_ttl=self.token_ttl,
                token_bytes=self.token_bytes,
                verify_url_base=self.verify_url_base,
            )
        except RepositoryError as e:
            raise DependencyFailure(f"resend failed: {e}", step="resend_verification") from e

        return RESEND_SENT_MESSAGE
