from typing import Any, Dict, List, Literal, Optional
from datetime import date, datetime

from pydantic import ConfigDict, Field, model_validator

from voter_portal.db.models import FormSource, SubmissionStatus
from .camel_base_model import CamelCaseBaseModel as BaseModel
from .notification_schemas import NotificationEvent
from .user_schemas import CountByValue

StatusName = Literal["pending", "approved", "rejected", "deleted"]
ReviewStatusName = Literal["pending", "approved", "rejected"]


class SubmissionCreate(BaseModel):
    """
    Registration form payload.

    Field-level rules (required fields, digit lengths, conditional education
    and name-change fields) are checked by ``SubmissionsDAL.validate`` so that
    every failing field is reported at once.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: Optional[int] = None

    # Personal details
    surname: Optional[str] = Field(None, max_length=255)
    first_name: Optional[str] = Field(None, max_length=255)
    fathers_husband_name: Optional[str] = Field(None, max_length=255)
    fathers_husband_full_name: Optional[str] = Field(None, max_length=255)
    sex: Optional[Literal["M", "F"]] = None
    qualification: Optional[str] = Field(None, max_length=255)
    occupation: Optional[str] = Field(None, max_length=255)
    date_of_birth: Optional[date] = None
    age_years: Optional[int] = None
    age_months: Optional[int] = None

    # Address
    district: Optional[str] = Field(None, max_length=255)
    taluka: Optional[str] = Field(None, max_length=255)
    village_name: Optional[str] = Field(None, max_length=255)
    house_no: Optional[str] = Field(None, max_length=255)
    street: Optional[str] = Field(None, max_length=255)
    pin_code: Optional[str] = None

    # Contact / identity
    mobile_number: Optional[str] = None
    email: Optional[str] = Field(None, max_length=255)
    aadhaar_number: Optional[str] = None

    # Education
    year_of_passing: Optional[str] = Field(None, max_length=4)
    degree_diploma: Optional[str] = Field(None, max_length=255)
    name_of_university: Optional[str] = Field(None, max_length=255)
    name_of_diploma: Optional[str] = Field(None, max_length=255)
    education_type: Optional[Literal["degree", "diploma"]] = None
    document_type: Optional[Literal["certificate", "markmemo"]] = None

    # Name change
    have_changed_name: Optional[Literal["Yes", "No"]] = "No"
    previous_name: Optional[str] = Field(None, max_length=255)
    name_change_document_type: Optional[Literal["marriage", "gazette", "pan"]] = None

    place: Optional[str] = Field(None, max_length=255)
    declaration_date: Optional[date] = None

    # Team attribution, filled in server side for team submissions
    filled_for_self: bool = False

    @model_validator(mode="before")
    @classmethod
    def blank_strings_to_none(cls, values):
        # Form clients send "" for fields left empty
        if isinstance(values, dict):
            return {
                key: None if isinstance(value, str) and not value.strip() else value
                for key, value in values.items()
            }
        return values


class TeamMemberInfo(BaseModel):
    """Who on the team entered a submission on a citizen's behalf"""

    filled_by_user_id: Optional[int] = None
    filled_by_name: Optional[str] = None
    filled_by_phone: Optional[str] = None
    form_source: FormSource = FormSource.PUBLIC
    filled_for_self: bool = False


class RequestMetadata(BaseModel):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    source: str = "web"


class StoredFile(BaseModel):
    """Metadata of one uploaded document; the bytes live in object storage"""

    field_name: str
    filename: str = Field(..., description="Object name in the file store")
    original_name: str
    size: int
    mime_type: str
    uploaded_at: datetime


class SubmissionRecord(BaseModel):
    """Full submission row as returned by the data-access layer"""

    id: str
    user_id: Optional[int] = None

    surname: str
    first_name: str
    fathers_husband_name: Optional[str] = None
    fathers_husband_full_name: Optional[str] = None
    sex: Optional[str] = None
    qualification: Optional[str] = None
    occupation: Optional[str] = None
    date_of_birth: Optional[date] = None
    age_years: Optional[int] = None
    age_months: Optional[int] = None

    district: str
    taluka: str
    village_name: Optional[str] = None
    house_no: Optional[str] = None
    street: Optional[str] = None
    pin_code: str

    mobile_number: str
    email: Optional[str] = None
    aadhaar_number: str

    year_of_passing: Optional[str] = None
    degree_diploma: Optional[str] = None
    name_of_university: Optional[str] = None
    name_of_diploma: Optional[str] = None
    education_type: Optional[str] = None
    document_type: Optional[str] = None

    have_changed_name: Optional[str] = None
    previous_name: Optional[str] = None
    name_change_document_type: Optional[str] = None
    place: Optional[str] = None
    declaration_date: Optional[date] = None

    status: SubmissionStatus
    submitted_at: datetime
    updated_at: datetime
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    files: Dict[str, Any] = Field(default_factory=dict)

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    source: Optional[str] = None

    filled_by_user_id: Optional[int] = None
    filled_by_name: Optional[str] = None
    filled_by_phone: Optional[str] = None
    form_source: FormSource = FormSource.PUBLIC
    filled_for_self: bool = False


class SubmissionWriteResult(BaseModel):
    """Created submission plus notifications to dispatch after commit"""

    submission: SubmissionRecord
    events: List[NotificationEvent] = Field(default_factory=list)


class SubmissionFilters(BaseModel):
    """Query parameters for submission listing; omitted filters do not constrain"""

    limit: int = Field(50, ge=1, le=1000)
    offset: int = Field(0, ge=0)
    status: Optional[StatusName] = None
    district: Optional[str] = None
    taluka: Optional[str] = None
    user_id: Optional[int] = None
    filled_by_user_id: Optional[int] = None
    form_source: Optional[Literal["public", "team"]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: ReviewStatusName = Field(..., description="New review status")
    rejection_reason: Optional[str] = Field(None, max_length=2000)


class BulkStatusUpdateRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1, max_length=500)
    status: ReviewStatusName


class BulkStatusUpdateResult(BaseModel):
    """Partial success is a normal outcome: check ``failed``"""

    updated: int = 0
    failed: List[str] = Field(default_factory=list)


class StatusView(BaseModel):
    id: str
    status: SubmissionStatus
    updated_at: datetime
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class DuplicateCheckResult(BaseModel):
    mobile_exists: bool
    aadhaar_exists: bool


class SubmissionStatistics(BaseModel):
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    today: int = 0
    this_week: int = 0
    this_month: int = 0
    by_district: List[CountByValue] = Field(default_factory=list)
    by_taluka: List[CountByValue] = Field(default_factory=list)
