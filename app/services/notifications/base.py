"""
Notification Service Abstract Base Class

Defines the interface for the account emails sent during onboarding.
Supports both Mock (development) and Real (production) implementations.

Delivery is always best-effort from the caller's point of view: a failed
send is reported through NotificationResult (or an exception) and never
undoes the work that triggered it.

Author: Khalil Bannouri
Version: 4.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates"

VERIFICATION_SUBJECT = "Confirm your email address - {app_name}"
PASSWORD_RESET_SUBJECT = "Reset your password - {app_name}"


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


@dataclass
class RenderedEmail:
    subject: str
    body_html: str
    body_text: str


_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_verification_email(name: str, verify_url: str, app_name: str, valid_hours: int = 24) -> RenderedEmail:
    """Render the verification email from the Jinja2 templates."""
    context = {
        "name": name,
        "verify_url": verify_url,
        "app_name": app_name,
        "valid_hours": valid_hours,
        "year": datetime.now().year,
    }
    return RenderedEmail(
        subject=VERIFICATION_SUBJECT.format(app_name=app_name),
        body_html=_env.get_template("verification_email.html").render(**context),
        body_text=_env.get_template("verification_email.txt").render(**context),
    )


def render_password_reset_email(name: str, reset_url: str, app_name: str, valid_minutes: int = 60) -> RenderedEmail:
    context = {
        "name": name,
        "reset_url": reset_url,
        "app_name": app_name,
        "valid_minutes": valid_minutes,
        "year": datetime.now().year,
    }
    return RenderedEmail(
        subject=PASSWORD_RESET_SUBJECT.format(app_name=app_name),
        body_html=_env.get_template("password_reset_email.html").render(**context),
        body_text=_env.get_template("password_reset_email.txt").render(**context),
    )


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    @abstractmethod
    async def send_verification_email(
        self,
        to_email: str,
        name: str,
        verify_url: str,
    ) -> NotificationResult:
        """Send the email-address confirmation link to a new owner."""
        pass

    @abstractmethod
    async def send_password_reset_email(
        self,
        to_email: str,
        name: str,
        reset_url: str,
    ) -> NotificationResult:
        """Send a password reset link to an owner."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
