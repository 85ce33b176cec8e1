from typing import List, Tuple

from fastapi import Depends
from sqlalchemy import func, select, update

from voter_portal.db.database import Database, get_database
from voter_portal.db.models import User
from voter_portal.schemas.auth_schemas import LoginRequest, LoginResult
from voter_portal.schemas.notification_schemas import NotificationEvent
from voter_portal.schemas.user_schemas import UserCreate, UserRecord
from voter_portal.services.user_service import UserService
from voter_portal.utils.auth import AuthUtils, dummy_password_hash
from voter_portal.utils.datetime_utils import naive_utc_now
from voter_portal.utils.errors import AuthenticationError
from voter_portal.utils.logging import get_logger

logger = get_logger()


class AuthService:
    """Authentication service for handling login, registration and token issue"""

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def issue_token(user: UserRecord) -> str:
        return AuthUtils.generate_access_token(user.id, user.email, user.role.value)

    async def _find_active_user(self, login_field: str, login_type: str):
        login_field = login_field.strip()
        if login_type == "phone":
            condition = User.phone == login_field
        else:
            condition = func.lower(User.email) == login_field.lower()

        stmt = select(User).where(condition, User.is_active.is_(True)).limit(1)
        async with self.database.session() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def authenticate_user(
        self, login_field: str, password: str, login_type: str = "email"
    ) -> LoginResult:
        """
        Verify credentials of an active user and issue a bearer token.

        Unknown users and wrong passwords fail identically, and an unknown
        user still pays for one bcrypt check so response timing does not
        reveal which accounts exist.
        """
        user = await self._find_active_user(login_field, login_type)

        if user is None:
            await AuthUtils.verify_password_async(password, dummy_password_hash())
            raise AuthenticationError("Invalid credentials", "INVALID_CREDENTIALS")

        if not await AuthUtils.verify_password_async(password, user.password):
            raise AuthenticationError("Invalid credentials", "INVALID_CREDENTIALS")

        last_login = naive_utc_now()
        await self.database.query(
            update(User).where(User.id == user.id).values(last_login=last_login)
        )
        user.last_login = last_login

        record = UserRecord.model_validate(user)
        logger.info(f"User {record.id} logged in via {login_type}")
        return LoginResult(token=self.issue_token(record), user=record)

    async def register(
        self, data: LoginRequest
    ) -> Tuple[LoginResult, List[NotificationEvent]]:
        """Volunteer self-registration through the login endpoint"""
        result = await UserService(self.database).create_user(
            UserCreate(
                email=data.email,
                password=data.password,
                role="volunteer",
                first_name=data.first_name,
                last_name=data.last_name,
                phone=data.phone,
                district=data.district,
                taluka=data.taluka,
            )
        )
        login = LoginResult(token=self.issue_token(result.user), user=result.user)
        return login, result.events


def get_auth_service(database: Database = Depends(get_database)) -> AuthService:
    """Dependency function to get AuthService instance"""
    return AuthService(database)
