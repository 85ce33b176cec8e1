import os

# Settings are read once at import; pin the test values before anything loads them
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "")
os.environ.setdefault("TWILIO_WHATSAPP_NUMBER", "")

import itertools
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from voter_portal.db.database import Database
from voter_portal.db.db import create_tables
from voter_portal.main import create_application
from voter_portal.middlewares.rate_limit import (
    auth_rate_limit,
    form_rate_limit,
    general_rate_limit,
    upload_rate_limit,
)
from voter_portal.schemas.submission_schemas import StoredFile, SubmissionCreate
from voter_portal.schemas.user_schemas import UserCreate, UserRecord
from voter_portal.services.auth_service import AuthService
from voter_portal.services.file_storage_service import get_file_storage_service
from voter_portal.services.notification_service import get_notification_dispatcher
from voter_portal.services.submissions_dal import SubmissionsDAL
from voter_portal.services.user_service import UserService
from voter_portal.utils.datetime_utils import naive_utc_now
from voter_portal.utils.errors import NotFoundError

_sequence = itertools.count(1)


def submission_payload(**overrides: Any) -> Dict[str, Any]:
    """camelCase registration form with a fresh mobile and Aadhaar number"""
    n = next(_sequence)
    payload = {
        "surname": "Patil",
        "firstName": "Asha",
        "fathersHusbandName": "Ramesh",
        "sex": "F",
        "ageYears": 34,
        "ageMonths": 2,
        "district": "Pune",
        "taluka": "Haveli",
        "villageName": "Wagholi",
        "pinCode": "412207",
        "mobileNumber": f"98{n:08d}",
        "aadhaarNumber": f"5000{n:08d}",
        "email": f"asha{n}@example.com",
        "haveChangedName": "No",
    }
    payload.update(overrides)
    return payload


def submission_data(**overrides: Any) -> SubmissionCreate:
    return SubmissionCreate.model_validate(submission_payload(**overrides))


class FakeDispatcher:
    """Collects events instead of queueing Celery tasks"""

    def __init__(self):
        self.events = []

    async def dispatch(self, events) -> List[str]:
        events = list(events)
        self.events.extend(events)
        return [event.kind for event in events]


class FakeStorage:
    """In-memory stand-in for the MinIO file store"""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []

    async def save_upload(self, field_name, file, prefix="submissions") -> StoredFile:
        content = await file.read()
        object_name = f"{prefix}/{field_name}_{len(self.objects)}_{file.filename}"
        self.objects[object_name] = content
        return StoredFile(
            field_name=field_name,
            filename=object_name,
            original_name=file.filename,
            size=len(content),
            mime_type=file.content_type,
            uploaded_at=naive_utc_now(),
        )

    async def save_uploads(self, files, prefix="submissions") -> List[StoredFile]:
        return [
            await self.save_upload(field_name, file, prefix)
            for field_name, file in files
        ]

    async def delete_files(self, object_names) -> None:
        for object_name in object_names:
            self.objects.pop(object_name, None)
            self.deleted.append(object_name)

    async def generate_presigned_url(
        self, object_name: str, expires_in_hours: Optional[int] = None
    ) -> str:
        if object_name not in self.objects:
            raise NotFoundError(f"File '{object_name}' not found", "FILE_NOT_FOUND")
        return f"http://files.test/{object_name}?expires={expires_in_hours}"


@pytest.fixture(autouse=True)
def reset_rate_limits():
    for limiter in (general_rate_limit, form_rate_limit, auth_rate_limit, upload_rate_limit):
        limiter.reset()
    yield


@pytest_asyncio.fixture
async def database(tmp_path):
    """File-backed SQLite database with the full schema, one per test"""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'voter_portal.db'}")
    await create_tables(db)
    yield db
    await db.close()


@pytest.fixture
def dal(database) -> SubmissionsDAL:
    return SubmissionsDAL(database)


@pytest.fixture
def user_service(database) -> UserService:
    return UserService(database)


@pytest.fixture
def auth_service(database) -> AuthService:
    return AuthService(database)


async def _create_user(
    user_service: UserService, role: str, email: str, **fields: Any
) -> UserRecord:
    result = await user_service.create_user(
        UserCreate(email=email, password="secret123", role=role, **fields)
    )
    return result.user


@pytest_asyncio.fixture
async def admin_user(user_service) -> UserRecord:
    return await _create_user(
        user_service, "admin", "admin@example.com", first_name="Ada", last_name="Admin"
    )


@pytest_asyncio.fixture
async def supervisor_user(user_service) -> UserRecord:
    return await _create_user(
        user_service,
        "supervisor",
        "supervisor@example.com",
        first_name="Sunil",
        district="Pune",
        taluka="Haveli",
    )


@pytest_asyncio.fixture
async def volunteer_user(user_service) -> UserRecord:
    return await _create_user(
        user_service,
        "volunteer",
        "volunteer@example.com",
        first_name="Vina",
        last_name="Kale",
        phone="9123456780",
        district="Pune",
    )


def auth_headers(user: UserRecord) -> Dict[str, str]:
    return {"Authorization": f"Bearer {AuthService.issue_token(user)}"}


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def app(database, dispatcher, storage):
    application = create_application(database=database)
    application.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    application.dependency_overrides[get_file_storage_service] = lambda: storage
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
