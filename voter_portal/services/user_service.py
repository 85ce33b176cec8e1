from typing import Any, Dict, List, Optional, Tuple

from fastapi import Depends
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from voter_portal.config.settings import settings
from voter_portal.db.database import Database, get_database
from voter_portal.db.models import User, UserRole
from voter_portal.schemas.auth_schemas import TeamSignupRequest
from voter_portal.schemas.user_schemas import (
    CountByValue,
    UserCreate,
    UserFilters,
    UserRecord,
    UserStats,
    UserUpdate,
    UserWriteResult,
)
from voter_portal.services.notification_service import (
    build_team_welcome_message,
    build_welcome_message,
)
from voter_portal.utils.auth import AuthUtils
from voter_portal.utils.datetime_utils import naive_utc_now, strictly_after
from voter_portal.utils.errors import (
    NoFieldsToUpdateError,
    NotFoundError,
    UserAlreadyExistsError,
)
from voter_portal.utils.logging import get_logger

logger = get_logger()

TOP_DISTRICTS = 10

# A null in a patch for these means "not supplied"
NON_NULLABLE_FIELDS = ("email", "password", "role", "is_active")


class UserService:
    """Service provider for team user management; the only writer of ``users``"""

    def __init__(self, database: Database):
        self.database = database

    async def _ensure_email_free(
        self, session: AsyncSession, email: str, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(User.id).where(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if (await session.execute(stmt.limit(1))).first() is not None:
            raise UserAlreadyExistsError()

    async def _ensure_phone_free(
        self, session: AsyncSession, phone: str, exclude_id: Optional[int] = None
    ) -> None:
        # Phone is a login identifier, so it must resolve to one user
        stmt = select(User.id).where(User.phone == phone)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if (await session.execute(stmt.limit(1))).first() is not None:
            raise UserAlreadyExistsError("User with this phone number already exists")

    async def _insert_user(self, fields: Dict[str, Any]) -> UserRecord:
        password_hash = await AuthUtils.hash_password_async(fields.pop("password"))

        async def _create(session: AsyncSession) -> UserRecord:
            await self._ensure_email_free(session, fields["email"])
            if fields.get("phone"):
                await self._ensure_phone_free(session, fields["phone"])
            now = naive_utc_now()
            user = User(
                **fields,
                password=password_hash,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            session.add(user)
            try:
                await session.flush()
            except IntegrityError as e:
                raise UserAlreadyExistsError() from e
            return UserRecord.model_validate(user)

        return await self.database.transaction(_create)

    async def create_user(self, data: UserCreate) -> UserWriteResult:
        """
        Create a team user.

        The welcome message is returned as an event rather than sent here, so a
        messaging outage can never undo the insert.
        """
        user = await self._insert_user(
            {
                "email": data.email,
                "password": data.password,
                "role": UserRole(data.role),
                "first_name": data.first_name,
                "last_name": data.last_name,
                "phone": data.phone,
                "district": data.district,
                "taluka": data.taluka,
            }
        )
        logger.info(f"Created user {user.id} with role {user.role.value}")

        welcome = build_welcome_message(user)
        return UserWriteResult(user=user, events=[welcome] if welcome else [])

    async def register_team_member(self, data: TeamSignupRequest) -> UserWriteResult:
        """Self-service volunteer signup keyed by phone number"""
        if await self.get_user_by_phone(data.phone) is not None:
            raise UserAlreadyExistsError("User with this phone number already exists")

        first_name, _, last_name = data.name.strip().partition(" ")
        user = await self._insert_user(
            {
                "email": f"{data.phone}@{settings.TEAM_EMAIL_DOMAIN}",
                "password": data.password,
                "role": UserRole.VOLUNTEER,
                "first_name": first_name,
                "last_name": last_name.strip() or None,
                "phone": data.phone,
                "district": data.district,
                "taluka": data.padvidhar,
            }
        )
        logger.info(f"Registered team member {user.id}")

        welcome = build_team_welcome_message(user)
        return UserWriteResult(user=user, events=[welcome] if welcome else [])

    async def _get_one(self, *conditions) -> Optional[UserRecord]:
        async with self.database.session() as session:
            user = (
                await session.execute(select(User).where(*conditions).limit(1))
            ).scalar_one_or_none()
        return UserRecord.model_validate(user) if user else None

    async def get_user_by_id(self, user_id: int) -> Optional[UserRecord]:
        return await self._get_one(User.id == user_id)

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        return await self._get_one(func.lower(User.email) == email.lower())

    async def get_user_by_phone(self, phone: str) -> Optional[UserRecord]:
        return await self._get_one(User.phone == phone)

    async def get_users(
        self, filters: Optional[UserFilters] = None
    ) -> Tuple[List[UserRecord], int]:
        """Filtered page of users, newest first, plus the filtered total"""
        filters = filters or UserFilters()
        conditions = []
        if filters.role:
            conditions.append(User.role == UserRole(filters.role))
        if filters.district:
            conditions.append(User.district == filters.district)
        if filters.taluka:
            conditions.append(User.taluka == filters.taluka)
        if filters.is_active is not None:
            conditions.append(User.is_active == filters.is_active)
        if filters.search and filters.search.strip():
            pattern = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                    User.email.ilike(pattern),
                    User.phone.ilike(pattern),
                )
            )

        count_stmt = select(func.count()).select_from(User).where(*conditions)
        page_stmt = (
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc(), User.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )

        async with self.database.session() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            users = (await session.execute(page_stmt)).scalars().all()

        return [UserRecord.model_validate(user) for user in users], total

    async def update_user(self, user_id: int, patch: UserUpdate) -> UserRecord:
        """Write only the fields present in ``patch``"""
        changes = {
            field: value
            for field, value in patch.changes().items()
            if value is not None or field not in NON_NULLABLE_FIELDS
        }
        if not changes:
            raise NoFieldsToUpdateError()

        if changes.get("password"):
            changes["password"] = await AuthUtils.hash_password_async(changes["password"])
        if changes.get("role"):
            changes["role"] = UserRole(changes["role"])

        async def _update(session: AsyncSession) -> UserRecord:
            user = await session.get(User, user_id, with_for_update=True)
            if user is None:
                raise NotFoundError(f"User {user_id} not found", "USER_NOT_FOUND")
            if changes.get("email"):
                await self._ensure_email_free(session, changes["email"], exclude_id=user_id)
            if changes.get("phone"):
                await self._ensure_phone_free(session, changes["phone"], exclude_id=user_id)

            for field, value in changes.items():
                setattr(user, field, value)
            user.updated_at = strictly_after(user.updated_at)
            await session.flush()
            return UserRecord.model_validate(user)

        user = await self.database.transaction(_update)
        logger.info(f"Updated user {user_id}: {sorted(changes)}")
        return user

    async def deactivate_user(self, user_id: int) -> UserRecord:
        """Soft delete; existing tokens stop working on their next request"""
        user = await self.update_user(user_id, UserUpdate(is_active=False))
        logger.info(f"Deactivated user {user_id}")
        return user

    async def get_user_stats(self) -> UserStats:
        totals_stmt = select(
            func.count().label("total"),
            func.count(case((User.is_active.is_(True), 1))).label("active"),
        ).select_from(User)
        roles_stmt = (
            select(User.role, func.count())
            .where(User.is_active.is_(True))
            .group_by(User.role)
        )
        count = func.count().label("count")
        districts_stmt = (
            select(User.district, count)
            .where(User.is_active.is_(True), User.district.is_not(None))
            .group_by(User.district)
            .order_by(count.desc(), User.district)
            .limit(TOP_DISTRICTS)
        )

        async with self.database.session() as session:
            totals = (await session.execute(totals_stmt)).one()
            roles = (await session.execute(roles_stmt)).all()
            districts = (await session.execute(districts_stmt)).all()

        by_role = {role.value: 0 for role in UserRole}
        by_role.update({role.value: total for role, total in roles})

        return UserStats(
            total=totals.total,
            active=totals.active,
            inactive=totals.total - totals.active,
            by_role=by_role,
            by_district=[
                CountByValue(value=district, count=total)
                for district, total in districts
            ],
        )


def get_user_service(database: Database = Depends(get_database)) -> UserService:
    """Dependency function to get UserService instance"""
    return UserService(database)
