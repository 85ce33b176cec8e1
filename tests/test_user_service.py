import pytest
from sqlalchemy import select

from voter_portal.db.models import User, UserRole
from voter_portal.schemas.auth_schemas import TeamSignupRequest
from voter_portal.schemas.user_schemas import UserCreate, UserFilters, UserUpdate
from voter_portal.utils.auth import AuthUtils
from voter_portal.utils.errors import (
    NoFieldsToUpdateError,
    NotFoundError,
    UserAlreadyExistsError,
)


def _user(email: str, **fields) -> UserCreate:
    fields.setdefault("password", "secret123")
    return UserCreate(email=email, **fields)


async def _stored_password(database, user_id: int) -> str:
    async with database.session() as session:
        return await session.scalar(select(User.password).where(User.id == user_id))


class TestCreateUser:
    """Creating team users."""

    @pytest.mark.asyncio
    async def test_round_trip_returns_supplied_fields_without_password(
        self, user_service
    ):
        created = await user_service.create_user(
            _user(
                "Priya@Example.com",
                role="supervisor",
                first_name="Priya",
                last_name="Joshi",
                phone="9876501234",
                district="Kolhapur",
                taluka="Karvir",
            )
        )

        fetched = await user_service.get_user_by_id(created.user.id)

        assert fetched == created.user
        assert fetched.email == "Priya@Example.com"
        assert fetched.role == UserRole.SUPERVISOR
        assert fetched.first_name == "Priya"
        assert fetched.last_name == "Joshi"
        assert fetched.phone == "9876501234"
        assert fetched.district == "Kolhapur"
        assert fetched.taluka == "Karvir"
        assert fetched.is_active is True
        dumped = fetched.model_dump(by_alias=True)
        assert "password" not in dumped
        assert "secret123" not in str(dumped)

    @pytest.mark.asyncio
    async def test_password_is_stored_as_bcrypt_hash(self, user_service, database):
        created = await user_service.create_user(_user("hash@example.com"))

        stored = await _stored_password(database, created.user.id)
        assert stored != "secret123"
        assert stored.startswith("$2")
        assert AuthUtils.verify_password("secret123", stored)

    @pytest.mark.asyncio
    async def test_welcome_event_only_with_phone(self, user_service):
        with_phone = await user_service.create_user(
            _user("phone@example.com", phone="9000011111")
        )
        without_phone = await user_service.create_user(_user("nophone@example.com"))

        assert [event.kind for event in with_phone.events] == ["welcome"]
        assert with_phone.events[0].phone == "9000011111"
        assert without_phone.events == []

    @pytest.mark.asyncio
    async def test_duplicate_email_is_rejected_case_insensitively(self, user_service):
        await user_service.create_user(_user("same@example.com"))
        with pytest.raises(UserAlreadyExistsError):
            await user_service.create_user(_user("SAME@example.com"))

    @pytest.mark.asyncio
    async def test_phone_in_use_is_rejected(self, user_service, volunteer_user):
        with pytest.raises(UserAlreadyExistsError) as exc_info:
            await user_service.create_user(
                _user("second@example.com", phone=volunteer_user.phone)
            )
        assert "phone" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_users_without_phone_do_not_collide(self, user_service):
        first = await user_service.create_user(_user("nophone1@example.com"))
        second = await user_service.create_user(_user("nophone2@example.com"))
        assert first.user.phone is None
        assert second.user.phone is None


class TestLookups:
    """Point lookups by id, email and phone."""

    @pytest.mark.asyncio
    async def test_lookup_by_email_and_phone(self, user_service, volunteer_user):
        assert (await user_service.get_user_by_email("VOLUNTEER@example.com")).id == volunteer_user.id
        assert (await user_service.get_user_by_phone("9123456780")).id == volunteer_user.id
        assert await user_service.get_user_by_phone("9000000000") is None
        assert await user_service.get_user_by_id(999) is None


class TestGetUsers:
    """Filtered user listing."""

    @pytest.mark.asyncio
    async def test_filters_and_total(
        self, user_service, admin_user, supervisor_user, volunteer_user
    ):
        users, total = await user_service.get_users()
        assert total == 3
        assert [u.id for u in users] == [volunteer_user.id, supervisor_user.id, admin_user.id]

        volunteers, total = await user_service.get_users(UserFilters(role="volunteer"))
        assert total == 1 and volunteers[0].id == volunteer_user.id

        in_pune, total = await user_service.get_users(UserFilters(district="Pune"))
        assert total == 2

        matched, total = await user_service.get_users(UserFilters(search="kale"))
        assert total == 1 and matched[0].id == volunteer_user.id

    @pytest.mark.asyncio
    async def test_pagination(self, user_service, admin_user, supervisor_user, volunteer_user):
        page, total = await user_service.get_users(UserFilters(limit=1, offset=1))
        assert total == 3
        assert [u.id for u in page] == [supervisor_user.id]

    @pytest.mark.asyncio
    async def test_is_active_filter(self, user_service, admin_user, volunteer_user):
        await user_service.deactivate_user(volunteer_user.id)

        inactive, total = await user_service.get_users(UserFilters(is_active=False))
        assert total == 1 and inactive[0].id == volunteer_user.id


class TestUpdateUser:
    """Partial updates."""

    @pytest.mark.asyncio
    async def test_only_supplied_fields_change(self, user_service, volunteer_user):
        updated = await user_service.update_user(
            volunteer_user.id, UserUpdate(district="Satara")
        )

        assert updated.district == "Satara"
        assert updated.first_name == volunteer_user.first_name
        assert updated.phone == volunteer_user.phone
        assert updated.updated_at > volunteer_user.updated_at

    @pytest.mark.asyncio
    async def test_explicit_null_clears_nullable_field(self, user_service, volunteer_user):
        patch = UserUpdate.model_validate({"lastName": None})
        updated = await user_service.update_user(volunteer_user.id, patch)
        assert updated.last_name is None

    @pytest.mark.asyncio
    async def test_password_is_rehashed(self, user_service, database, volunteer_user):
        await user_service.update_user(volunteer_user.id, UserUpdate(password="newpass99"))

        stored = await _stored_password(database, volunteer_user.id)
        assert AuthUtils.verify_password("newpass99", stored)
        assert not AuthUtils.verify_password("secret123", stored)

    @pytest.mark.asyncio
    async def test_role_change(self, user_service, volunteer_user):
        updated = await user_service.update_user(
            volunteer_user.id, UserUpdate(role="supervisor")
        )
        assert updated.role == UserRole.SUPERVISOR

    @pytest.mark.asyncio
    async def test_empty_patch_is_rejected(self, user_service, volunteer_user):
        with pytest.raises(NoFieldsToUpdateError):
            await user_service.update_user(volunteer_user.id, UserUpdate())

    @pytest.mark.asyncio
    async def test_missing_user_is_not_found(self, user_service):
        with pytest.raises(NotFoundError):
            await user_service.update_user(404, UserUpdate(district="Pune"))

    @pytest.mark.asyncio
    async def test_taken_email_is_rejected(self, user_service, admin_user, volunteer_user):
        with pytest.raises(UserAlreadyExistsError):
            await user_service.update_user(
                volunteer_user.id, UserUpdate(email="ADMIN@example.com")
            )

    @pytest.mark.asyncio
    async def test_email_is_stored_as_supplied(self, user_service, volunteer_user):
        await user_service.update_user(
            volunteer_user.id, UserUpdate(email="Vina.Kale@Example.com")
        )
        fetched = await user_service.get_user_by_id(volunteer_user.id)
        assert fetched.email == "Vina.Kale@Example.com"

    @pytest.mark.asyncio
    async def test_taken_phone_is_rejected(self, user_service, admin_user, volunteer_user):
        with pytest.raises(UserAlreadyExistsError):
            await user_service.update_user(
                admin_user.id, UserUpdate(phone=volunteer_user.phone)
            )

    @pytest.mark.asyncio
    async def test_keeping_own_phone_is_allowed(self, user_service, volunteer_user):
        updated = await user_service.update_user(
            volunteer_user.id, UserUpdate(phone=volunteer_user.phone, district="Satara")
        )
        assert updated.phone == volunteer_user.phone


class TestUserStats:
    """Counts by activation, role and district."""

    @pytest.mark.asyncio
    async def test_stats_cover_active_users_only(
        self, user_service, admin_user, supervisor_user, volunteer_user
    ):
        await user_service.deactivate_user(supervisor_user.id)

        stats = await user_service.get_user_stats()

        assert stats.total == 3
        assert stats.active == 2
        assert stats.inactive == 1
        assert stats.by_role == {"admin": 1, "supervisor": 0, "volunteer": 1}
        assert [(d.value, d.count) for d in stats.by_district] == [("Pune", 1)]


class TestTeamSignup:
    """Self-service volunteer signup keyed by phone number."""

    @staticmethod
    def _signup(**overrides) -> TeamSignupRequest:
        data = {
            "name": "Ganesh Rao Pawar",
            "phone": "9988776655",
            "password": "team1234",
            "padvidhar": "Pune Graduates",
            "address": "12 MG Road",
            "district": "Pune",
            "pin": "411001",
        }
        data.update(overrides)
        return TeamSignupRequest(**data)

    @pytest.mark.asyncio
    async def test_creates_volunteer_with_phone_email(self, user_service):
        result = await user_service.register_team_member(self._signup())
        user = result.user

        assert user.role == UserRole.VOLUNTEER
        assert user.email.startswith("9988776655@")
        assert user.first_name == "Ganesh"
        assert user.last_name == "Rao Pawar"
        assert user.taluka == "Pune Graduates"
        assert [event.kind for event in result.events] == ["team_welcome"]

    @pytest.mark.asyncio
    async def test_phone_already_registered(self, user_service):
        await user_service.register_team_member(self._signup())
        with pytest.raises(UserAlreadyExistsError) as exc_info:
            await user_service.register_team_member(self._signup(name="Someone Else"))
        assert "phone" in exc_info.value.message
