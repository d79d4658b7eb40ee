"""
FastAPI Application Entry Point

Restaurant Tenant Platform - onboarding and tenant access.
Supports both Mock services (development) and Real APIs (production).

Endpoints:
    - POST /register: Create a tenant with its owner account
    - POST /auth/login: Owner login, returns a session token
    - POST /auth/superadmin-login: Super admin login, returns a session token
    - GET /auth/verify-email: Confirm an owner's email address
    - POST /auth/resend-verification: Send a fresh confirmation link
    - POST /auth/forgot-password: Mail a password reset link
    - GET /auth/reset-password: Check a password reset link
    - POST /auth/reset-password: Set a new password from a reset link
    - GET /api/tenants/{tenant_slug}: Tenant record (owner or super admin)
    - GET /health: System health check

Author: Khalil Bannouri
Version: 4.0.0
"""

import asyncio
import sys
import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from app.core.config import StoreBackend, get_settings, setup_logging
from app.core.exceptions import (
    DependencyFailure,
    RepositoryError,
    TenantAccessDenied,
    TenantNotFound,
    TenantPlatformError,
)
from app.database import engine, init_db
from app.repository import BaseTenantRepository, get_tenant_repository
from app.schemas import (
    ErrorResponse,
    ForgotPasswordRequest,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OwnerSession,
    RegistrationCreate,
    RegistrationResponse,
    ResendVerificationRequest,
    ResetPasswordRequest,
    ResetTokenStatusResponse,
    SuperAdminInfo,
    SuperAdminLoginResponse,
    TenantResponse,
    TenantSummaryResponse,
)
from app.services.access import AccessDecision, AccessGuard, CallerIdentity, identity_from_headers
from app.services.auth import AuthService
from app.services.notifications import BaseNotificationService, get_notification_service
from app.services.password_reset import PasswordResetService
from app.services.passwords import PasswordHasher, get_password_hasher
from app.services.provisioning import ProvisioningConfig, ProvisioningOrchestrator, RegistrationRequest
from app.services.rate_limit import (
    get_redis,
    limit_api,
    limit_login,
    limit_register,
    limit_superadmin_login,
)
from app.services.sessions import SessionTokenService, get_session_service
from app.services.slugs import SlugAllocator
from app.services.verification import EmailVerificationService

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Store: {settings.store_backend.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    if settings.store_backend == StoreBackend.SQL:
        await init_db()
        logger.info("✅ Database initialized")

    notification_service = get_notification_service()
    logger.info(f"✅ Notification Service: {notification_service.provider_name}")

    if settings.trust_identity_headers:
        logger.warning("⚠️ TRUST_IDENTITY_HEADERS is on: raw identity headers are accepted")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    await get_redis().aclose()
    get_password_hasher().shutdown()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Tenant onboarding and per-request tenant authorization for the "
        "restaurant ordering platform."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

@lru_cache()
def get_provisioning_config() -> ProvisioningConfig:
    return ProvisioningConfig.from_settings(get_settings())


def get_orchestrator(
    repository: BaseTenantRepository = Depends(get_tenant_repository),
    hasher: PasswordHasher = Depends(get_password_hasher),
    notifier: BaseNotificationService = Depends(get_notification_service),
    config: ProvisioningConfig = Depends(get_provisioning_config),
) -> ProvisioningOrchestrator:
    """One orchestrator (and slug allocator) per registration request."""
    allocator = SlugAllocator(
        repository,
        max_attempts=settings.slug_max_attempts,
        fallback_prefix=settings.slug_fallback_prefix,
    )
    return ProvisioningOrchestrator(repository, allocator, hasher, notifier, config)


def get_auth_service(
    repository: BaseTenantRepository = Depends(get_tenant_repository),
    hasher: PasswordHasher = Depends(get_password_hasher),
    sessions: SessionTokenService = Depends(get_session_service),
) -> AuthService:
    return AuthService(repository, hasher, sessions)


def get_verification_service(
    repository: BaseTenantRepository = Depends(get_tenant_repository),
    notifier: BaseNotificationService = Depends(get_notification_service),
    config: ProvisioningConfig = Depends(get_provisioning_config),
) -> EmailVerificationService:
    return EmailVerificationService(
        repository,
        notifier,
        token_ttl=config.token_ttl,
        token_bytes=config.token_bytes,
        verify_url_base=config.verify_url_base,
    )


def get_password_reset_service(
    repository: BaseTenantRepository = Depends(get_tenant_repository),
    hasher: PasswordHasher = Depends(get_password_hasher),
    notifier: BaseNotificationService = Depends(get_notification_service),
) -> PasswordResetService:
    return PasswordResetService(
        repository,
        hasher,
        notifier,
        token_ttl=timedelta(minutes=settings.password_reset_token_ttl_minutes),
        token_bytes=settings.verification_token_bytes,
        reset_url_base=f"{settings.app_base_url.rstrip('/')}{settings.password_reset_path}",
    )


def get_caller_identity(
    request: Request,
    sessions: SessionTokenService = Depends(get_session_service),
) -> CallerIdentity:
    return identity_from_headers(request.headers, sessions, get_settings().trust_identity_headers)


async def require_tenant_access(
    tenant_slug: str,
    identity: CallerIdentity = Depends(get_caller_identity),
    repository: BaseTenantRepository = Depends(get_tenant_repository),
) -> AccessDecision:
    """Gate for every tenant-scoped route; raises the generic 403 on denial."""
    decision = await AccessGuard(repository).authorize(identity, tenant_slug)
    if not decision.authorized:
        raise TenantAccessDenied(
            f"access to {tenant_slug} denied",
            context={"reason": decision.denial_reason.value if decision.denial_reason else None},
        )
    return decision


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    repository: BaseTenantRepository = Depends(get_tenant_repository),
    notifier: BaseNotificationService = Depends(get_notification_service),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check tenant store
    db_status = "healthy"
    try:
        if not await repository.health_check():
            db_status = "unhealthy"
    except RepositoryError as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Store health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    if not settings.rate_limit_enabled:
        redis_status = "disabled"
    else:
        try:
            await get_redis().ping()
        except RedisError as e:
            redis_status = f"unhealthy: {str(e)}"
            logger.error(f"Redis health check failed: {e}")

    # Check notification service
    notification_status = f"healthy ({notifier.provider_name})"
    if not await notifier.health_check():
        notification_status = f"unhealthy ({notifier.provider_name})"

    overall = "healthy" if db_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        notification_service=notification_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# REGISTRATION
# =============================================================================

@app.post(
    "/register",
    response_model=RegistrationResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    tags=["Registration"],
    summary="Register a new tenant",
    dependencies=[Depends(limit_register)],
)
async def register_tenant(
    payload: RegistrationCreate,
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
) -> RegistrationResponse:
    """
    Create a tenant, its owner account and default records.

    Settings, subscription and the confirmation email are best-effort and
    never turn a successful registration into an error.
    """
    result = await orchestrator.register(
        RegistrationRequest(
            business_name=payload.business_name or "",
            email=payload.email or "",
            phone=payload.phone or "",
            password=payload.password or "",
        )
    )

    if result.failed_steps:
        logger.warning(f"Tenant {result.tenant.slug} registered without: {', '.join(result.failed_steps)}")

    return RegistrationResponse(
        tenant=TenantSummaryResponse(
            id=result.tenant.id,
            name=result.tenant.name,
            email=result.tenant.email,
            tenant_slug=result.tenant.slug,
        ),
        message=result.message,
    )


# =============================================================================
# AUTHENTICATION
# =============================================================================

@app.post(
    "/auth/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Auth"],
    dependencies=[Depends(limit_login)],
)
async def login(
    payload: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Owner login."""
    result = await auth.login_owner(payload.email, payload.password)
    profile = result.profile
    return LoginResponse(
        tenant=OwnerSession(
            id=profile.id,
            name=profile.name or profile.email,
            email=profile.email,
            business_id=profile.id,
            tenant_slug=profile.tenant_slug,
            email_verified=profile.email_verified,
        ),
        session_token=result.session_token,
    )


@app.post(
    "/auth/superadmin-login",
    response_model=SuperAdminLoginResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Auth"],
    dependencies=[Depends(limit_superadmin_login)],
)
async def superadmin_login(
    payload: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> SuperAdminLoginResponse:
    result = await auth.login_superadmin(payload.email, payload.password)
    return SuperAdminLoginResponse(
        admin=SuperAdminInfo(id=result.admin.id, email=result.admin.email, name=result.admin.name),
        session_token=result.session_token,
    )


@app.get(
    "/auth/verify-email",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Auth"],
)
async def verify_email(
    token: Optional[str] = Query(None),
    verification: EmailVerificationService = Depends(get_verification_service),
) -> MessageResponse:
    return MessageResponse(message=await verification.verify(token))


@app.post(
    "/auth/resend-verification",
    response_model=MessageResponse,
    tags=["Auth"],
    dependencies=[Depends(limit_api)],
)
async def resend_verification(
    payload: ResendVerificationRequest,
    verification: EmailVerificationService = Depends(get_verification_service),
) -> MessageResponse:
    """Always succeeds for unknown addresses."""
    return MessageResponse(message=await verification.resend(payload.email))


@app.post(
    "/auth/forgot-password",
    response_model=MessageResponse,
    tags=["Auth"],
    dependencies=[Depends(limit_api)],
)
async def forgot_password(
    payload: ForgotPasswordRequest,
    resets: PasswordResetService = Depends(get_password_reset_service),
) -> MessageResponse:
    """Same answer for known and unknown addresses."""
    return MessageResponse(message=await resets.request_reset(payload.email))


@app.get(
    "/auth/reset-password",
    response_model=ResetTokenStatusResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Auth"],
    dependencies=[Depends(limit_api)],
)
async def check_reset_token(
    token: Optional[str] = Query(None, max_length=128),
    resets: PasswordResetService = Depends(get_password_reset_service),
) -> ResetTokenStatusResponse:
    await resets.check(token)
    return ResetTokenStatusResponse(valid=True)


@app.post(
    "/auth/reset-password",
    response_model=MessageResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Auth"],
    dependencies=[Depends(limit_api)],
)
async def reset_password(
    payload: ResetPasswordRequest,
    resets: PasswordResetService = Depends(get_password_reset_service),
) -> MessageResponse:
    return MessageResponse(message=await resets.reset(payload.token, payload.password))


# =============================================================================
# TENANT-SCOPED ENDPOINTS
# =============================================================================

@app.get(
    "/api/tenants/{tenant_slug}",
    response_model=TenantResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Tenants"],
)
async def get_tenant(
    tenant_slug: str,
    decision: AccessDecision = Depends(require_tenant_access),
    repository: BaseTenantRepository = Depends(get_tenant_repository),
) -> TenantResponse:
    """Tenant record for its owner or any active super admin."""
    try:
        tenant = await repository.get_tenant_by_slug(tenant_slug)
    except RepositoryError as e:
        raise DependencyFailure(f"tenant lookup failed: {e}", step="get_tenant") from e

    if tenant is None:
        raise TenantNotFound(f"tenant {tenant_slug} not found")

    if decision.is_super_admin:
        logger.info(f"Super admin {decision.actor_id} read tenant {tenant_slug}")

    response = TenantResponse.model_validate(tenant)
    response.accessed_as_super_admin = decision.is_super_admin
    return response


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(TenantPlatformError)
async def platform_exception_handler(request: Request, exc: TenantPlatformError) -> JSONResponse:
    """Domain errors: status and public message come from the exception."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed [{exc.code}]: {exc} {exc.context}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected [{exc.code}]: {exc} {exc.context}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.public_message,
            "code": exc.code,
        },
    )


def _safe_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the submitted values (passwords, tokens)."""
    return [
        {"loc": list(err.get("loc", ())), "type": err.get("type"), "msg": err.get("msg")}
        for err in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies answer 400 like every other validation error."""
    errors = _safe_errors(exc)
    logger.info(f"{request.method} {request.url.path} invalid body: {errors}")

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request",
            "code": "validation_error",
            "detail": errors if settings.debug else None,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
