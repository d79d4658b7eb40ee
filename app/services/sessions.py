"""
Session Tokens

Server-issued, HMAC-signed JWTs minted at login. The access guard trusts
the identity claims inside a verified token, never identity values the
client typed into headers.

Claims:
    sub    - business profile id or super admin id
    email  - lower-cased login email
    role   - "owner" or "superadmin"
    tenant - owner's tenant slug (owners only)
    iat/exp
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

import jwt

from app.core.config import get_settings
from app.core.exceptions import InvalidSessionToken
from app.repository.base import BusinessProfileRecord, SuperAdminRecord

logger = logging.getLogger(__name__)


class SessionRole(str, enum.Enum):
    OWNER = "owner"
    SUPERADMIN = "superadmin"


@dataclass(frozen=True)
class SessionClaims:
    subject: str
    email: str
    role: SessionRole
    tenant_slug: Optional[str]
    expires_at: datetime


class SessionTokenService:
    """Issues and verifies session tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", ttl: timedelta = timedelta(hours=12)):
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = ttl

    def _issue(self, subject: str, email: str, role: SessionRole, tenant_slug: Optional[str] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": subject,
            "email": email.lower(),
            "role": role.value,
            "iat": now,
            "exp": now + self.ttl,
        }
        if tenant_slug is not None:
            payload["tenant"] = tenant_slug
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def issue_owner_token(self, profile: BusinessProfileRecord) -> str:
        return self._issue(profile.id, profile.email, SessionRole.OWNER, profile.tenant_slug)

    def issue_superadmin_token(self, admin: SuperAdminRecord) -> str:
        return self._issue(admin.id, admin.email, SessionRole.SUPERADMIN)

    def decode(self, token: str) -> SessionClaims:
        """
        Verify signature and expiry.

        Raises:
            InvalidSessionToken: token is expired, forged or malformed
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub", "email", "role"]},
            )
            role = SessionRole(payload["role"])
        except jwt.ExpiredSignatureError as e:
            raise InvalidSessionToken("session token expired") from e
        except (jwt.InvalidTokenError, ValueError) as e:
            raise InvalidSessionToken(f"session token rejected: {e}") from e

        return SessionClaims(
            subject=str(payload["sub"]),
            email=str(payload["email"]),
            role=role,
            tenant_slug=payload.get("tenant"),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


@lru_cache()
def get_session_service() -> SessionTokenService:
    settings = get_settings()
    return SessionTokenService(
        secret=settings.session_secret,
        algorithm=settings.session_algorithm,
        ttl=timedelta(hours=settings.session_ttl_hours),
    )
