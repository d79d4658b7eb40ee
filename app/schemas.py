"""
Pydantic Schemas for Request/Response Validation

Registration, login, email verification and tenant access payloads.
Request bodies accept the camelCase names the web client sends
(businessName) as well as snake_case.

Content rules (password length, email shape) are checked by the services
so that every entry point shares them; the schemas only fix the shape.

Author: Khalil Bannouri
Version: 4.0.0
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class RegistrationCreate(BaseModel):
    """Request schema for registering a new tenant."""
    model_config = ConfigDict(populate_by_name=True)

    business_name: Optional[str] = Field(None, alias="businessName", max_length=200, examples=["Frituur Nolim"])
    email: Optional[str] = Field(None, max_length=254, examples=["owner@frituurnolim.be"])
    phone: Optional[str] = Field(None, max_length=50, examples=["+32 470 12 34 56"])
    password: Optional[str] = Field(None, max_length=200)


class LoginRequest(BaseModel):
    """Owner or super admin credentials."""
    email: Optional[str] = Field(None, max_length=254)
    password: Optional[str] = Field(None, max_length=200)


class ResendVerificationRequest(BaseModel):
    email: Optional[str] = Field(None, max_length=254)


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = Field(None, max_length=254)


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = Field(None, max_length=128)
    password: Optional[str] = Field(None, max_length=200)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class TenantSummaryResponse(BaseModel):
    """Tenant created by a registration."""
    id: str
    name: str
    email: str
    tenant_slug: str


class RegistrationResponse(BaseModel):
    """Response after successfully registering a tenant."""
    success: bool = True
    tenant: TenantSummaryResponse
    message: str


class OwnerSession(BaseModel):
    id: str
    name: str
    email: str
    business_id: str
    tenant_slug: str
    email_verified: bool = False


class LoginResponse(BaseModel):
    success: bool = True
    tenant: OwnerSession
    session_token: str
    token_type: str = "bearer"


class SuperAdminInfo(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class SuperAdminLoginResponse(BaseModel):
    success: bool = True
    admin: SuperAdminInfo
    session_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    """Plain success message."""
    success: bool = True
    message: str


class ResetTokenStatusResponse(BaseModel):
    """A reset link that can still be used."""
    valid: bool = True


class TenantResponse(BaseModel):
    """A tenant record as seen by an authorized caller."""
    id: str
    slug: str
    name: str
    email: str
    phone: str
    plan: str
    subscription_status: str
    trial_ends_at: Optional[datetime]
    created_at: Optional[datetime]
    accessed_as_super_admin: bool = False

    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    notification_service: str
    timestamp: datetime
