"""HTTP tests for the FastAPI application."""

import pytest

from app import main as app_main
from app.core.exceptions import RateLimitExceeded
from app.services.access import GENERIC_DENIAL_MESSAGE
from tests.factories import seed_owner

REGISTRATION = {
    "businessName": "Frituur Nolim!!",
    "email": "a@b.com",
    "phone": "+32 470 12 34 56",
    "password": "12345678",
}


async def register(client, **overrides):
    return await client.post("/register", json={**REGISTRATION, **overrides})


async def owner_token(client, email="a@b.com", password="12345678") -> str:
    response = await client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.json()["session_token"]


class TestRegisterEndpoint:

    async def test_success_shape(self, client):
        response = await register(client)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["tenant"]["tenant_slug"] == "frituurnolim"
        assert body["tenant"]["name"] == "Frituur Nolim!!"
        assert body["tenant"]["email"] == "a@b.com"
        assert body["tenant"]["id"]
        assert body["message"]

    async def test_snake_case_body_accepted(self, client):
        payload = {**REGISTRATION, "business_name": "Pizza Roma"}
        del payload["businessName"]

        response = await client.post("/register", json=payload)

        assert response.status_code == 200
        assert response.json()["tenant"]["tenant_slug"] == "pizzaroma"

    async def test_short_password(self, client, repository):
        response = await register(client, password="1234567")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "validation_error"
        assert "8" in body["error"]
        assert repository.tenants == {}

    async def test_missing_field(self, client):
        payload = dict(REGISTRATION)
        del payload["phone"]

        response = await client.post("/register", json=payload)

        assert response.status_code == 400

    async def test_malformed_body_is_400(self, client):
        response = await register(client, password=["not", "a", "string"])

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.parametrize("debug", [False, True])
    async def test_rejected_password_is_never_echoed(self, client, caplog, monkeypatch, debug):
        monkeypatch.setattr(app_main.settings, "debug", debug)
        secret = "Hunter2-" + "x" * 300

        with caplog.at_level("INFO"):
            response = await register(client, password=secret)

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert secret not in caplog.text
        assert secret not in response.text
        if debug:
            [error] = response.json()["detail"]
            assert error["loc"] == ["body", "password"]
            assert error["type"] == "string_too_long"

    async def test_duplicate_email(self, client):
        await register(client)

        response = await register(client, businessName="Another Shop", email="A@B.com")

        assert response.status_code == 409
        assert response.json() == {
            "success": False,
            "error": "This email address is already in use",
            "code": "email_in_use",
        }

    async def test_rate_limited(self, client):
        from app.main import app
        from app.services.rate_limit import limit_register

        async def full_bucket():
            raise RateLimitExceeded("register rate limit exceeded")

        app.dependency_overrides[limit_register] = full_bucket

        response = await register(client)

        assert response.status_code == 429
        assert response.json()["code"] == "rate_limited"


class TestLoginEndpoints:

    async def test_owner_login(self, client):
        await register(client)

        response = await client.post("/auth/login", json={"email": "a@b.com", "password": "12345678"})

        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["tenant"]["tenant_slug"] == "frituurnolim"
        assert body["tenant"]["email_verified"] is False

    async def test_owner_login_wrong_password(self, client):
        await register(client)

        response = await client.post("/auth/login", json={"email": "a@b.com", "password": "wrong-one"})

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid email or password"

    async def test_superadmin_login(self, client, repository, hasher):
        repository.add_super_admin(email="root@example.com", password_hash=await hasher.hash("admin-pass"), name="Root")

        response = await client.post(
            "/auth/superadmin-login", json={"email": "root@example.com", "password": "admin-pass"}
        )

        assert response.status_code == 200
        assert response.json()["admin"]["email"] == "root@example.com"


class TestVerificationEndpoints:

    async def test_verify_flow(self, client, repository):
        await register(client)
        [token] = [t.token for t in repository.tokens.values()]

        response = await client.get("/auth/verify-email", params={"token": token})

        assert response.status_code == 200
        assert response.json()["success"] is True
        [profile] = repository.profiles.values()
        assert profile.email_verified

    @pytest.mark.parametrize("params", [{}, {"token": "bogus"}])
    async def test_bad_token(self, client, params):
        response = await client.get("/auth/verify-email", params=params)

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_token"

    async def test_resend_unknown_email(self, client):
        response = await client.post("/auth/resend-verification", json={"email": "nobody@example.com"})

        assert response.status_code == 200
        assert response.json()["success"] is True


class TestPasswordResetEndpoints:

    async def test_reset_flow(self, client, notifier):
        await register(client)

        response = await client.post("/auth/forgot-password", json={"email": "A@B.com"})
        assert response.status_code == 200
        assert response.json()["success"] is True
        token = notifier.sent[-1]["text"].split("?token=")[1].split()[0]

        check = await client.get("/auth/reset-password", params={"token": token})
        assert check.status_code == 200
        assert check.json() == {"valid": True}

        response = await client.post("/auth/reset-password", json={"token": token, "password": "brand-new-pw"})
        assert response.status_code == 200

        assert await owner_token(client, password="brand-new-pw")
        old = await client.post("/auth/login", json={"email": "a@b.com", "password": "12345678"})
        assert old.status_code == 401

        reused = await client.post("/auth/reset-password", json={"token": token, "password": "another-pw"})
        assert reused.status_code == 400
        assert reused.json()["code"] == "invalid_reset_token"

    async def test_unknown_email_same_answer(self, client):
        await register(client)

        known = await client.post("/auth/forgot-password", json={"email": "a@b.com"})
        unknown = await client.post("/auth/forgot-password", json={"email": "nobody@b.com"})

        assert known.json() == unknown.json()

    @pytest.mark.parametrize(
        "payload",
        [{}, {"token": "abc"}, {"token": "abc", "password": "short"}],
    )
    async def test_bad_reset_input(self, client, payload):
        response = await client.post("/auth/reset-password", json=payload)

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    async def test_check_unknown_token(self, client):
        response = await client.get("/auth/reset-password", params={"token": "nope"})

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_reset_token"


class TestTenantEndpoint:

    async def test_owner_reads_own_tenant(self, client):
        await register(client)
        token = await owner_token(client)

        response = await client.get("/api/tenants/frituurnolim", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        body = response.json()
        assert body["slug"] == "frituurnolim"
        assert body["plan"] == "starter"
        assert body["subscription_status"] == "trial"
        assert body["accessed_as_super_admin"] is False

    async def test_owner_denied_other_tenant(self, client, repository):
        await seed_owner(repository, "otherplace", "other@example.com")
        await register(client)
        token = await owner_token(client)

        response = await client.get("/api/tenants/otherplace", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403
        assert response.json()["error"] == GENERIC_DENIAL_MESSAGE

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": "Bearer not-a-jwt"},
            {"x-business-id": "anything", "x-auth-email": "a@b.com"},
        ],
    )
    async def test_missing_or_bad_evidence(self, client, headers):
        await register(client)

        response = await client.get("/api/tenants/frituurnolim", headers=headers)

        assert response.status_code == 403
        assert response.json()["error"] == GENERIC_DENIAL_MESSAGE

    async def test_superadmin_reads_any_tenant(self, client, repository, hasher, sessions):
        await register(client)
        admin = repository.add_super_admin(email="root@example.com", password_hash=await hasher.hash("admin-pass"))
        token = sessions.issue_superadmin_token(admin)

        response = await client.get("/api/tenants/frituurnolim", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["accessed_as_super_admin"] is True

    async def test_superadmin_unknown_tenant(self, client, repository, sessions):
        admin = repository.add_super_admin(email="root@example.com", password_hash="$2b$04$x")
        token = sessions.issue_superadmin_token(admin)

        response = await client.get("/api/tenants/nowhere", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 404


class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "healthy"
        assert body["redis"] == "disabled"
        assert body["notification_service"] == "healthy (mock)"

    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["health"] == "/health"
