from typing import Dict, List, Literal, Optional
from datetime import datetime

from pydantic import Field

from voter_portal.db.models import UserRole
from .camel_base_model import CamelCaseBaseModel as BaseModel
from .notification_schemas import NotificationEvent

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

RoleName = Literal["admin", "supervisor", "volunteer"]


class UserCreate(BaseModel):
    """Request schema for creating a team user"""

    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(..., min_length=4, max_length=72)
    role: RoleName = Field("volunteer", description="User role")
    first_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    district: Optional[str] = Field(None, max_length=255)
    taluka: Optional[str] = Field(None, max_length=255)


class UserUpdate(BaseModel):
    """Partial update; only fields present in the request body are written"""

    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = Field(None, min_length=4, max_length=72)
    role: Optional[RoleName] = None
    first_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^[0-9]{10}$")
    district: Optional[str] = Field(None, max_length=255)
    taluka: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None

    def changes(self) -> Dict[str, object]:
        return self.model_dump(exclude_unset=True)


class UserRecord(BaseModel):
    """User as exposed outside the auth service. Never carries the password."""

    id: int
    email: str
    role: UserRole
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class UserFilters(BaseModel):
    """Query parameters for user listing"""

    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)
    role: Optional[RoleName] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
    is_active: Optional[bool] = None
    search: Optional[str] = Field(None, description="Matches name, email or phone")


class CountByValue(BaseModel):
    value: str
    count: int


class UserStats(BaseModel):
    total: int
    active: int
    inactive: int
    by_role: Dict[str, int]
    by_district: List[CountByValue]


class UserWriteResult(BaseModel):
    """Created user plus follow-up notifications to dispatch after commit"""

    user: UserRecord
    events: List[NotificationEvent] = Field(default_factory=list)

