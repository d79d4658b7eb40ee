"""
Mock Notification Service

Simulates email sending for development.
No actual messages are sent - just logged.

Author: Khalil Bannouri
Version: 4.0.0
"""

import asyncio
import random
import uuid
import logging
from typing import Optional

from app.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    render_password_reset_email,
    render_verification_email,
)
from app.core.config import get_settings

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """
    Mock notification service for development and tests.

    Args:
        failure_rate: Fraction of sends reported as failed
        latency: (min, max) seconds of simulated network delay
    """

    def __init__(self, failure_rate: float = 0.05, latency: tuple[float, float] = (0.1, 0.3)):
        self.failure_rate = failure_rate
        self.latency = latency
        self.sent: list[dict] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        await asyncio.sleep(random.uniform(*self.latency))

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Simulate sending email."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock email failed (simulated) to {to_email}")
            return NotificationResult(
                success=False,
                error_message="Simulated email failure",
                provider="mock"
            )

        message_id = f"email_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"to": to_email, "subject": subject, "html": body_html, "text": body_text})
        logger.info(f"Mock email sent to {to_email}: {subject} (ID: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider="mock"
        )

    async def send_verification_email(
        self,
        to_email: str,
        name: str,
        verify_url: str,
    ) -> NotificationResult:
        """Render and "send" the verification email."""
        settings = get_settings()
        email = render_verification_email(
            name=name,
            verify_url=verify_url,
            app_name=settings.app_name,
            valid_hours=settings.verification_token_ttl_hours,
        )
        return await self.send_email(to_email, email.subject, email.body_html, email.body_text)

    async def send_password_reset_email(
        self,
        to_email: str,
        name: str,
        reset_url: str,
    ) -> NotificationResult:
        settings = get_settings()
        email = render_password_reset_email(
            name=name,
            reset_url=reset_url,
            app_name=settings.app_name,
            valid_minutes=settings.password_reset_token_ttl_minutes,
        )
        return await self.send_email(to_email, email.subject, email.body_html, email.body_text)

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
