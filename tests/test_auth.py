from datetime import timedelta

import jwt
import pytest

from voter_portal.config.settings import settings
from voter_portal.db.models import UserRole
from voter_portal.schemas.auth_schemas import LoginRequest
from voter_portal.schemas.user_schemas import UserUpdate
from voter_portal.utils.auth import AuthUtils
from voter_portal.utils.errors import AuthenticationError, UserAlreadyExistsError

from tests.conftest import auth_headers


class TestPasswords:
    """bcrypt hashing helpers."""

    def test_hash_and_verify(self):
        hashed = AuthUtils.hash_password("s3cret!")
        assert hashed != "s3cret!"
        assert AuthUtils.verify_password("s3cret!", hashed)
        assert not AuthUtils.verify_password("wrong", hashed)

    def test_same_password_gets_distinct_salts(self):
        assert AuthUtils.hash_password("repeat") != AuthUtils.hash_password("repeat")

    def test_malformed_hash_does_not_verify(self):
        assert AuthUtils.verify_password("anything", "not-a-bcrypt-hash") is False

    def test_over_long_password_is_rejected(self):
        with pytest.raises(ValueError):
            AuthUtils.hash_password("x" * 73)

    @pytest.mark.asyncio
    async def test_async_variants(self):
        hashed = await AuthUtils.hash_password_async("async-pass")
        assert await AuthUtils.verify_password_async("async-pass", hashed)


class TestTokens:
    """JWT issue and verification."""

    def test_payload_claims(self):
        token = AuthUtils.generate_access_token(7, "a@example.com", "supervisor")
        payload = AuthUtils.verify_access_token(token)

        assert payload["sub"] == "7"
        assert payload["id"] == 7
        assert payload["email"] == "a@example.com"
        assert payload["role"] == "supervisor"
        assert payload["exp"] - payload["iat"] == settings.JWT_EXPIRE_HOURS * 3600
        assert payload["jti"]

    def test_expired_token_is_rejected(self):
        token = AuthUtils.generate_access_token(
            1, "a@example.com", "admin", expires_delta=timedelta(seconds=-1)
        )
        assert AuthUtils.verify_access_token(token) is None

    def test_foreign_signature_is_rejected(self):
        token = jwt.encode(
            {"sub": "1", "exp": 9999999999}, "some-other-secret-of-enough-length", algorithm="HS256"
        )
        assert AuthUtils.verify_access_token(token) is None

    def test_garbage_is_rejected(self):
        assert AuthUtils.verify_access_token("not.a.token") is None


class TestRoleHierarchy:
    """admin > supervisor > volunteer."""

    @pytest.mark.parametrize(
        "user_role, required, allowed",
        [
            ("admin", "admin", True),
            ("admin", "volunteer", True),
            ("supervisor", "volunteer", True),
            ("supervisor", "admin", False),
            ("volunteer", "supervisor", False),
            ("volunteer", "volunteer", True),
            ("unknown", "volunteer", False),
            ("admin", "superuser", False),
        ],
    )
    def test_has_role(self, user_role, required, allowed):
        assert AuthUtils.has_role(user_role, required) is allowed


class TestAuthenticateUser:
    """Credential checks against active users."""

    @pytest.mark.asyncio
    async def test_login_by_email_stamps_last_login(self, auth_service, user_service, volunteer_user):
        assert volunteer_user.last_login is None

        result = await auth_service.authenticate_user("VOLUNTEER@example.com", "secret123")

        assert result.user.id == volunteer_user.id
        assert AuthUtils.verify_access_token(result.token)["id"] == volunteer_user.id
        stored = await user_service.get_user_by_id(volunteer_user.id)
        assert stored.last_login is not None

    @pytest.mark.asyncio
    async def test_login_by_phone(self, auth_service, volunteer_user):
        result = await auth_service.authenticate_user("9123456780", "secret123", "phone")
        assert result.user.id == volunteer_user.id

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_user_fail_identically(
        self, auth_service, volunteer_user
    ):
        with pytest.raises(AuthenticationError) as wrong_password:
            await auth_service.authenticate_user("volunteer@example.com", "nope")
        with pytest.raises(AuthenticationError) as unknown_user:
            await auth_service.authenticate_user("ghost@example.com", "nope")

        assert wrong_password.value.message == unknown_user.value.message == "Invalid credentials"
        assert wrong_password.value.error_code == unknown_user.value.error_code

    @pytest.mark.asyncio
    async def test_inactive_user_cannot_log_in(self, auth_service, user_service, volunteer_user):
        await user_service.deactivate_user(volunteer_user.id)
        with pytest.raises(AuthenticationError):
            await auth_service.authenticate_user("volunteer@example.com", "secret123")


class TestRegister:
    """Volunteer self-registration through the login request."""

    @pytest.mark.asyncio
    async def test_register_creates_volunteer(self, auth_service):
        request = LoginRequest(
            login_field="new@example.com",
            password="newpass1",
            action="register",
            email="new@example.com",
            first_name="Nita",
            phone="9000012345",
        )

        result, events = await auth_service.register(request)

        assert result.user.role == UserRole.VOLUNTEER
        assert result.user.email == "new@example.com"
        assert AuthUtils.verify_access_token(result.token)["email"] == "new@example.com"
        assert [event.kind for event in events] == ["welcome"]

    @pytest.mark.asyncio
    async def test_register_existing_email(self, auth_service, volunteer_user):
        request = LoginRequest(
            login_field="volunteer@example.com",
            password="whatever",
            action="register",
            email="volunteer@example.com",
        )
        with pytest.raises(UserAlreadyExistsError):
            await auth_service.register(request)

    def test_register_requires_email(self):
        with pytest.raises(ValueError):
            LoginRequest(login_field="x", password="y", action="register")


class TestAuthDependencies:
    """Bearer token checks in front of protected routes."""

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["meta"]["error_code"] == "NOT_AUTHENTICATED"

    @pytest.mark.asyncio
    async def test_invalid_token_is_401(self, client):
        response = await client.get(
            "/api/auth/me", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_for_exact_role_is_allowed(self, client, supervisor_user):
        response = await client.get(
            "/api/submissions/stats", headers=auth_headers(supervisor_user)
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_lower_role_is_403(self, client, volunteer_user):
        response = await client.get(
            "/api/submissions/stats", headers=auth_headers(volunteer_user)
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_deactivated_user_token_is_rejected_on_next_request(
        self, client, user_service, supervisor_user
    ):
        headers = auth_headers(supervisor_user)
        first = await client.get("/api/submissions/stats", headers=headers)
        assert first.status_code == 200

        await user_service.deactivate_user(supervisor_user.id)

        second = await client.get("/api/submissions/stats", headers=headers)
        assert second.status_code == 401

    @pytest.mark.asyncio
    async def test_role_is_read_from_database_not_token(
        self, client, user_service, volunteer_user
    ):
        headers = auth_headers(volunteer_user)
        assert (await client.get("/api/submissions/stats", headers=headers)).status_code == 403

        await user_service.update_user(volunteer_user.id, UserUpdate(role="supervisor"))
        assert (await client.get("/api/submissions/stats", headers=headers)).status_code == 200
