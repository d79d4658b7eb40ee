"""
Real Notification Service

Production implementation using SendGrid for email.

The SendGrid client is synchronous; calls run in a worker thread so the
event loop keeps serving requests while a send is in flight.

Author: Khalil Bannouri
Version: 4.0.0
"""

import asyncio
import logging
from typing import Optional

from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from app.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    render_password_reset_email,
    render_verification_email,
)
from app.core.config import get_settings

logger = logging.getLogger(__name__)


class RealNotificationService(BaseNotificationService):
    """Production notification service using SendGrid."""

    def __init__(self):
        settings = get_settings()
        self.app_name = settings.app_name
        self.valid_hours = settings.verification_token_ttl_hours
        self.reset_valid_minutes = settings.password_reset_token_ttl_minutes

        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
            self.sendgrid_from_email = settings.sendgrid_from_email
        else:
            self.sendgrid_client = None
            logger.warning("SendGrid credentials not configured")

        logger.info("RealNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "sendgrid"

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send email via SendGrid."""
        if not self.sendgrid_client:
            return NotificationResult(
                success=False,
                error_message="SendGrid not configured",
                provider="sendgrid"
            )

        message = Mail(
            from_email=self.sendgrid_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=body_html,
            plain_text_content=body_text
        )

        try:
            response = await asyncio.to_thread(self.sendgrid_client.send, message)
        except HTTPError as e:
            logger.error(f"SendGrid error: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="sendgrid"
            )

        logger.info(f"Email sent to {to_email}: {response.status_code}")

        return NotificationResult(
            success=response.status_code in [200, 201, 202],
            message_id=response.headers.get('X-Message-Id'),
            provider="sendgrid"
        )

    async def send_verification_email(
        self,
        to_email: str,
        name: str,
        verify_url: str,
    ) -> NotificationResult:
        """Send the email-address confirmation link."""
        email = render_verification_email(
            name=name,
            verify_url=verify_url,
            app_name=self.app_name,
            valid_hours=self.valid_hours,
        )
        return await self.send_email(to_email, email.subject, email.body_html, email.body_text)

    async def send_password_reset_email(
        self,
        to_email: str,
        name: str,
        reset_url: str,
    ) -> NotificationResult:
        email = render_password_reset_email(
            name=name,
            reset_url=reset_url,
            app_name=self.app_name,
            valid_minutes=self.reset_valid_minutes,
        )
        return await self.send_email(to_email, email.subject, email.body_html, email.body_text)

    async def health_check(self) -> bool:
        """SendGrid is usable when a client is configured."""
        return self.sendgrid_client is not None
