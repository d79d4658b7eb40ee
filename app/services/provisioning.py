"""
Tenant Provisioning Orchestrator

Brings a new tenant into existence as a saga over independent store writes:

    Validated -> EmailChecked -> SlugAllocated -> TenantCreated
        -> ProfileCreated -> (Settings) -> (Subscription) -> (Verification) -> Done

Critical core:
    Tenant + BusinessProfile. A failed profile write deletes the tenant
    again (compensation) unless its slug is protected. A failed delete is
    logged at CRITICAL to the durable compensation log and the caller
    still gets the original error.

Best-effort periphery:
    TenantSettings, Subscription, verification token + email. Each runs
    with its own short timeout capped by what is left of the registration
    deadline. Failures are logged and never change a successful response.

Slug and email uniqueness are decided by the store's unique constraints.
Losing a slug race re-allocates and retries, bounded by max_retries.

A core cut off by the registration deadline is settled by reading back what
the store committed: a profile means success, a lone tenant is compensated.

Author: Khalil Bannouri
Version: 4.0.0
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from app.core.config import COMPENSATION_LOGGER, Settings
from app.core.exceptions import (
    DependencyFailure,
    DuplicateRecordError,
    EmailAlreadyInUse,
    RegistrationTimeout,
    RegistrationValidationError,
    RepositoryError,
    SlugConflict,
)
from app.repository.base import BaseTenantRepository, BusinessProfileRecord, TenantRecord
from app.services.notifications.base import BaseNotificationService
from app.services.passwords import PasswordHasher
from app.services.slugs import SlugAllocator
from app.services.verification import issue_verification_token

logger = logging.getLogger(__name__)
compensation_logger = logging.getLogger(COMPENSATION_LOGGER)

MIN_PASSWORD_LENGTH = 8
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_PROTECTED_SLUGS = frozenset({"frituurnolim", "frituur-nolim", "demo-frituur"})

SUCCESS_MESSAGE = "Registration successful! Check your inbox to confirm your email address."
SUCCESS_MESSAGE_NO_EMAIL = (
    "Registration successful! You can log in now. "
    "The confirmation email could not be sent, you can request a new one."
)

# Step names used in logs and DependencyFailure.step
STEP_CHECK_EMAIL = "check_email"
STEP_ALLOCATE_SLUG = "allocate_slug"
STEP_HASH_PASSWORD = "hash_password"
STEP_CREATE_TENANT = "create_tenant"
STEP_CREATE_PROFILE = "create_business_profile"
STEP_SETTINGS = "create_tenant_settings"
STEP_SUBSCRIPTION = "create_subscription"
STEP_VERIFICATION = "send_verification"


# =============================================================================
# CONFIGURATION & DATA
# =============================================================================

@dataclass(frozen=True)
class ProvisioningConfig:
    """Everything the orchestrator needs, passed in explicitly."""
    protected_slugs: frozenset[str] = DEFAULT_PROTECTED_SLUGS
    plan: str = "starter"
    price_monthly: float = 79.0
    trial_days: int = 14
    primary_color: str = "#FF6B35"
    secondary_color: str = "#1a1a2e"
    max_retries: int = 3
    registration_timeout: float = 15.0
    periphery_step_timeout: float = 3.0
    compensation_timeout: float = 5.0
    token_ttl: timedelta = timedelta(hours=24)
    token_bytes: int = 32
    verify_url_base: str = "http://localhost:8001/auth/verify-email"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProvisioningConfig":
        return cls(
            protected_slugs=frozenset(settings.protected_tenants_list),
            plan=settings.default_plan,
            price_monthly=settings.starter_price_monthly,
            trial_days=settings.trial_days,
            primary_color=settings.default_primary_color,
            secondary_color=settings.default_secondary_color,
            max_retries=settings.provisioning_max_retries,
            registration_timeout=settings.registration_timeout_seconds,
            periphery_step_timeout=settings.periphery_step_timeout_seconds,
            compensation_timeout=settings.compensation_timeout_seconds,
            token_ttl=timedelta(hours=settings.verification_token_ttl_hours),
            token_bytes=settings.verification_token_bytes,
            verify_url_base=f"{settings.app_base_url.rstrip('/')}/auth/verify-email",
        )

    def is_protected(self, slug: str) -> bool:
        """A slug is protected when it equals or starts with a listed slug."""
        slug = slug.lower()
        return any(slug == p or slug.startswith(p) for p in self.protected_slugs)


@dataclass(frozen=True)
class RegistrationRequest:
    business_name: str
    email: str
    phone: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class TenantSummary:
    id: str
    name: str
    email: str
    slug: str


@dataclass(frozen=True)
class RegistrationResult:
    tenant: TenantSummary
    message: str
    # Periphery steps that did not complete, for logs and diagnostics
    failed_steps: tuple[str, ...] = ()


@dataclass
class _CoreState:
    """What the critical core has written so far."""
    tenant: Optional[TenantRecord] = None
    profile: Optional[BusinessProfileRecord] = None
    attempt: int = 0
    # Slug of the tenant write in flight, set before the write is sent
    slug: Optional[str] = None


def validate_registration(request: RegistrationRequest) -> RegistrationRequest:
    """
    Check and normalize registration input.

    Returns a copy with trimmed fields and a lower-cased email.

    Raises:
        RegistrationValidationError: missing field, short password, bad email
    """
    business_name = (request.business_name or "").strip()
    email = (request.email or "").strip().lower()
    phone = (request.phone or "").strip()
    password = request.password or ""

    if not business_name or not email or not phone or not password:
        raise RegistrationValidationError("Business name, email, phone and password are required")

    if len(password) < MIN_PASSWORD_LENGTH:
        raise RegistrationValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )

    if not EMAIL_PATTERN.match(email):
        raise RegistrationValidationError("Invalid email address")

    return RegistrationRequest(business_name=business_name, email=email, phone=phone, password=password)


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class ProvisioningOrchestrator:
    """
    Runs one tenant registration end to end.

    Args:
        repository: Tenant store
        allocator: Slug allocator for this registration
        hasher: Password hasher (bounded thread pool)
        notifier: Email sender for the verification link
        config: Provisioning constants
    """

    def __init__(
        self,
        repository: BaseTenantRepository,
        allocator: SlugAllocator,
        hasher: PasswordHasher,
        notifier: BaseNotificationService,
        config: Optional[ProvisioningConfig] = None,
    ):
        self.repository = repository
        self.allocator = allocator
        self.hasher = hasher
        self.notifier = notifier
        self.config = config or ProvisioningConfig()

    async def register(self, request: RegistrationRequest) -> RegistrationResult:
        """
        Register a new tenant.

        Raises:
            RegistrationValidationError: bad input, nothing written
            EmailAlreadyInUse: email already bound to a tenant
            SlugAllocationExhausted: no free slug for this business name
            SlugConflict: slug races lost max_retries times in a row
            DependencyFailure: store failure in the critical core
            RegistrationTimeout: deadline passed and no profile was committed
        """
        data = validate_registration(request)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.registration_timeout
        state = _CoreState()

        try:
            await asyncio.wait_for(self._provision_core(data, state), timeout=self.config.registration_timeout)
        except asyncio.TimeoutError:
            if state.profile is None:
                await self._settle_timeout(data, state)
            else:
                logger.warning(f"Deadline hit right after profile creation for {state.profile.tenant_slug}")

        tenant, profile = state.tenant, state.profile
        logger.info(f"Tenant core provisioned: {tenant.slug} (tenant={tenant.id}, profile={profile.id})")

        failed = await self._provision_periphery(tenant, profile, deadline)

        message = SUCCESS_MESSAGE_NO_EMAIL if STEP_VERIFICATION in failed else SUCCESS_MESSAGE
        return RegistrationResult(
            tenant=TenantSummary(id=tenant.id, name=tenant.name, email=tenant.email, slug=tenant.slug),
            message=message,
            failed_steps=tuple(failed),
        )

    # =========================================================================
    # CRITICAL CORE
    # =========================================================================

    async def _provision_core(self, data: RegistrationRequest, state: _CoreState) -> None:
        try:
            existing = await self.repository.get_tenant_by_email(data.email)
        except RepositoryError as e:
            raise DependencyFailure(f"email lookup failed: {e}", step=STEP_CHECK_EMAIL) from e
        if existing is not None:
            logger.info(f"Registration rejected: email already bound to tenant {existing.slug}")
            raise EmailAlreadyInUse("email already bound to a tenant")

        slug = await self._allocate(data.business_name)

        try:
            password_hash = await self.hasher.hash(data.password)
        except ValueError as e:
            raise DependencyFailure("password hashing failed", step=STEP_HASH_PASSWORD) from e

        now = datetime.now(timezone.utc)
        trial_ends_at = now + timedelta(days=self.config.trial_days)

        for attempt in range(1, self.config.max_retries + 1):
            state.attempt = attempt
            if attempt > 1:
                slug = await self._allocate(data.business_name)

            state.slug = slug
            try:
                tenant = await self.repository.create_tenant(
                    slug=slug,
                    name=data.business_name,
                    email=data.email,
                    phone=data.phone,
                    plan=self.config.plan,
                    subscription_status="trial",
                    trial_ends_at=trial_ends_at,
                )
            except DuplicateRecordError as e:
                if e.field == "email":
                    raise EmailAlreadyInUse("email taken by a concurrent registration") from e
                logger.warning(f"Slug {slug} taken at write time (attempt {attempt}), re-allocating")
                continue
            except RepositoryError as e:
                raise DependencyFailure(
                    f"tenant create failed: {e}", step=STEP_CREATE_TENANT, context={"slug": slug}
                ) from e
            state.tenant = tenant

            try:
                profile = await self.repository.create_business_profile(
                    name=data.business_name,
                    email=data.email,
                    password_hash=password_hash,
                    phone=data.phone,
                    tenant_slug=tenant.slug,
                )
            except DuplicateRecordError as e:
                await self._compensate(tenant, e)
                state.tenant = None
                if e.field == "email":
                    raise EmailAlreadyInUse("email already bound to a business profile") from e
                logger.warning(f"Profile for {slug} already exists (attempt {attempt}), re-allocating")
                continue
            except RepositoryError as e:
                await self._compensate(tenant, e)
                state.tenant = None
                raise DependencyFailure(
                    f"business profile create failed: {e}",
                    step=STEP_CREATE_PROFILE,
                    context={"slug": slug, "attempt": attempt},
                ) from e
            except Exception as e:
                await self._compensate(tenant, e)
                state.tenant = None
                raise

            state.profile = profile
            return

        logger.error(f"Gave up on slug for {data.business_name!r} after {self.config.max_retries} races")
        raise SlugConflict(
            f"slug collisions on {self.config.max_retries} consecutive attempts",
            context={"last_slug": slug},
        )

    async def _settle_timeout(self, data: RegistrationRequest, state: _CoreState) -> None:
        """
        Decide the outcome of a core cut off by the deadline.

        A cancelled write may still have been committed by the store, so the
        store is asked what actually landed. A profile bound to our tenant
        means the registration succeeded and `state` is filled in. A tenant
        without a profile is compensated and RegistrationTimeout is raised.
        """
        logger.error(
            f"Registration timed out after {self.config.registration_timeout}s "
            f"(attempt {state.attempt}, slug={state.slug}, tenant={'created' if state.tenant else 'unknown'})"
        )
        try:
            tenant, profile = await asyncio.wait_for(
                self._find_landed(data.email, state), timeout=self.config.compensation_timeout
            )
        except Exception as e:
            if state.tenant is not None:
                await self._compensate(state.tenant, "registration deadline exceeded")
            elif state.slug is not None:
                compensation_logger.critical(
                    f"COMPENSATION UNKNOWN: tenant write for slug={state.slug} email={data.email} "
                    f"was cut off and the store could not be checked: {e!r}"
                )
            raise RegistrationTimeout(
                "registration deadline exceeded before the business profile was confirmed",
                step=STEP_CREATE_PROFILE if state.tenant else STEP_CREATE_TENANT,
            ) from e

        if tenant is not None and profile is not None and profile.tenant_slug == tenant.slug:
            logger.warning(f"Deadline hit but tenant {tenant.slug} and its profile were committed")
            state.tenant, state.profile = tenant, profile
            return

        if tenant is not None:
            await self._compensate(tenant, "registration deadline exceeded")
        raise RegistrationTimeout(
            "registration deadline exceeded before the business profile was created",
            step=STEP_CREATE_PROFILE if tenant else STEP_CREATE_TENANT,
        )

    async def _find_landed(
        self, email: str, state: _CoreState
    ) -> tuple[Optional[TenantRecord], Optional[BusinessProfileRecord]]:
        tenant = state.tenant
        if tenant is None and state.slug is not None:
            found = await self.repository.get_tenant_by_email(email)
            # Only a tenant carrying the slug we were writing is ours
            if found is not None and found.slug == state.slug:
                tenant = found
        if tenant is None:
            return None, None
        profile = await self.repository.get_business_profile_by_email(email)
        return tenant, profile

    async def _allocate(self, business_name: str) -> str:
        try:
            return await self.allocator.allocate(business_name)
        except RepositoryError as e:
            raise DependencyFailure(f"slug lookup failed: {e}", step=STEP_ALLOCATE_SLUG) from e

    async def _compensate(self, tenant: TenantRecord, cause: object) -> None:
        """Delete a tenant whose business profile could not be created."""
        if self.config.is_protected(tenant.slug):
            logger.warning(f"Tenant {tenant.slug} is protected, not deleting it after: {cause}")
            return

        try:
            await asyncio.wait_for(
                self.repository.delete_tenant(tenant.id), timeout=self.config.compensation_timeout
            )
        except Exception as e:
            compensation_logger.critical(
                f"COMPENSATION FAILED: orphan tenant id={tenant.id} slug={tenant.slug} "
                f"email={tenant.email} left behind. Cause: {cause!r}. Delete error: {e!r}"
            )
            return

        logger.info(f"Compensated: deleted tenant {tenant.slug} ({tenant.id}) after: {cause}")

    # =========================================================================
    # BEST-EFFORT PERIPHERY
    # =========================================================================

    async def _provision_periphery(
        self,
        tenant: TenantRecord,
        profile: BusinessProfileRecord,
        deadline: float,
    ) -> list[str]:
        now = datetime.now(timezone.utc)
        steps: list[tuple[str, Callable[[], Awaitable[object]]]] = [
            (STEP_SETTINGS, lambda: self.repository.create_tenant_settings(
                tenant_slug=tenant.slug,
                business_name=tenant.name,
                email=tenant.email,
                phone=tenant.phone,
                primary_color=self.config.primary_color,
                secondary_color=self.config.secondary_color,
            )),
            (STEP_SUBSCRIPTION, lambda: self.repository.create_subscription(
                tenant_slug=tenant.slug,
                plan=self.config.plan,
                status="trial",
                price_monthly=self.config.price_monthly,
                trial_started_at=now,
                trial_ends_at=tenant.trial_ends_at,
            )),
            (STEP_VERIFICATION, lambda: self._send_verification(profile)),
        ]

        failed = []
        for step, run in steps:
            if not await self._best_effort(step, tenant.slug, run, deadline):
                failed.append(step)
        return failed

    async def _best_effort(
        self,
        step: str,
        slug: str,
        run: Callable[[], Awaitable[object]],
        deadline: float,
    ) -> bool:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            logger.warning(f"Skipped {step} for {slug}: registration deadline passed")
            return False

        try:
            outcome = await asyncio.wait_for(run(), timeout=min(self.config.periphery_step_timeout, remaining))
        except asyncio.TimeoutError:
            logger.warning(f"{step} for {slug} timed out, continuing")
            return False
        except Exception as e:
            logger.warning(f"{step} for {slug} failed, continuing: {e}")
            return False

        return outcome is not False

    async def _send_verification(self, profile: BusinessProfileRecord) -> bool:
        result = await issue_verification_token(
            self.repository,
            self.notifier,
            email=profile.email,
            name=profile.name,
            token_ttl=self.config.token_ttl,
            token_bytes=self.config.token_bytes,
            verify_url_base=self.config.verify_url_base,
        )
        return result.success
