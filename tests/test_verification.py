"""Tests for email verification links."""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import (
    DependencyFailure,
    InvalidRequest,
    RepositoryError,
    VerificationTokenError,
    VerificationTokenExpired,
)
from app.services.verification import (
    RESEND_ALREADY_VERIFIED_MESSAGE,
    RESEND_GENERIC_MESSAGE,
    RESEND_SENT_MESSAGE,
    VERIFIED_MESSAGE,
    EmailVerificationService,
    issue_verification_token,
)
from tests.factories import seed_owner

OWNER_EMAIL = "owner@example.com"


@pytest.fixture
def service(repository, notifier):
    return EmailVerificationService(
        repository, notifier, verify_url_base="http://testserver/auth/verify-email"
    )


@pytest.fixture
async def owner(repository):
    return await seed_owner(repository, "frituurnolim", OWNER_EMAIL)


async def issue(repository, notifier) -> str:
    before = {t.token for t in repository.tokens.values()}
    await issue_verification_token(
        repository,
        notifier,
        email=OWNER_EMAIL,
        name="Frituur Nolim",
        token_ttl=timedelta(hours=24),
        token_bytes=32,
        verify_url_base="http://testserver/auth/verify-email",
    )
    [token] = {t.token for t in repository.tokens.values()} - before
    return token


class TestIssue:

    async def test_link_contains_token(self, repository, notifier, owner):
        token = await issue(repository, notifier)

        [mail] = notifier.sent
        assert mail["to"] == OWNER_EMAIL
        assert f"http://testserver/auth/verify-email?token={token}" in mail["text"]

    async def test_tokens_are_unique(self, repository, notifier, owner):
        first = await issue(repository, notifier)
        second = await issue(repository, notifier)

        assert first != second
        assert len(repository.tokens) == 2


class TestVerify:

    async def test_valid_token_verifies_email(self, service, repository, notifier, owner):
        await issue(repository, notifier)
        token = await issue(repository, notifier)

        message = await service.verify(token)

        assert message == VERIFIED_MESSAGE
        profile = await repository.get_business_profile(owner.id)
        assert profile.email_verified
        assert profile.email_verified_at is not None

        [remaining] = repository.tokens.values()
        assert remaining.token == token
        assert remaining.used_at is not None

    async def test_token_is_single_use(self, service, repository, notifier, owner):
        token = await issue(repository, notifier)
        await service.verify(token)

        with pytest.raises(VerificationTokenError) as exc_info:
            await service.verify(token)

        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("token", [None, "", "does-not-exist"])
    async def test_missing_or_unknown_token(self, service, token):
        with pytest.raises(VerificationTokenError):
            await service.verify(token)

    async def test_expired_token_is_rejected_and_consumed(self, service, repository, notifier, owner):
        token = await issue(repository, notifier)
        later = datetime.now(timezone.utc) + timedelta(hours=25)

        with pytest.raises(VerificationTokenExpired) as exc_info:
            await service.verify(token, now=later)

        assert exc_info.value.public_message == "This verification link has expired"
        profile = await repository.get_business_profile(owner.id)
        assert not profile.email_verified

        with pytest.raises(VerificationTokenError) as exc_info:
            await service.verify(token)
        assert not isinstance(exc_info.value, VerificationTokenExpired)

    async def test_store_error(self, service, repository):
        repository.fail("get_unused_verification_token", RepositoryError("store down"))

        with pytest.raises(DependencyFailure):
            await service.verify("abc")


class TestResend:

    async def test_unknown_email_gets_generic_answer(self, service, notifier):
        message = await service.resend("nobody@example.com")

        assert message == RESEND_GENERIC_MESSAGE
        assert notifier.sent == []

    async def test_already_verified(self, service, repository, notifier, owner):
        token = await issue(repository, notifier)
        await service.verify(token)
        notifier.sent.clear()

        message = await service.resend(OWNER_EMAIL)

        assert message == RESEND_ALREADY_VERIFIED_MESSAGE
        assert notifier.sent == []

    async def test_pending_tokens_are_replaced(self, service, repository, notifier, owner):
        old = await issue(repository, notifier)
        notifier.sent.clear()

        message = await service.resend(" Owner@Example.com ")

        assert message == RESEND_SENT_MESSAGE
        [record] = repository.tokens.values()
        assert record.token != old
        [mail] = notifier.sent
        assert record.token in mail["text"]

    async def test_email_required(self, service):
        with pytest.raises(InvalidRequest):
            await service.resend("  ")
