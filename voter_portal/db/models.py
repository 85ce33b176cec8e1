from typing import Any, Dict, List, Optional
from datetime import datetime, date
from sqlalchemy import (
    JSON,
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    CheckConstraint,
    DateTime,
    Date,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum

from voter_portal.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_column(enum_cls: type, length: int = 20) -> Enum:
    """Enum stored as VARCHAR + CHECK so the values stay plain strings in SQL."""
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=True,
        length=length,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


# Enums
class UserRole(enum.Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    VOLUNTEER = "volunteer"


class SubmissionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELETED = "deleted"


class FormSource(enum.Enum):
    PUBLIC = "public"
    TEAM = "team"


class AuditAction(enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now, nullable=False
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole), default=UserRole.VOLUNTEER, nullable=False
    )
    first_name: Mapped[Optional[str]] = mapped_column(String(255))
    last_name: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    district: Mapped[Optional[str]] = mapped_column(String(255))
    taluka: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_users_role", "role"),
        Index("idx_users_district", "district"),
        Index("idx_users_is_active", "is_active"),
        Index("idx_users_phone", "phone"),
    )


class Submission(Base):
    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )

    # Personal details
    surname: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    fathers_husband_name: Mapped[Optional[str]] = mapped_column(String(255))
    fathers_husband_full_name: Mapped[Optional[str]] = mapped_column(String(255))
    sex: Mapped[Optional[str]] = mapped_column(String(1))
    qualification: Mapped[Optional[str]] = mapped_column(String(255))
    occupation: Mapped[Optional[str]] = mapped_column(String(255))
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date)
    age_years: Mapped[Optional[int]] = mapped_column(Integer)
    age_months: Mapped[Optional[int]] = mapped_column(Integer)

    # Address
    district: Mapped[str] = mapped_column(String(255), nullable=False)
    taluka: Mapped[str] = mapped_column(String(255), nullable=False)
    village_name: Mapped[Optional[str]] = mapped_column(String(255))
    house_no: Mapped[Optional[str]] = mapped_column(String(255))
    street: Mapped[Optional[str]] = mapped_column(String(255))
    pin_code: Mapped[str] = mapped_column(String(6), nullable=False)

    # Contact / identity
    mobile_number: Mapped[str] = mapped_column(String(10), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    aadhaar_number: Mapped[str] = mapped_column(String(12), nullable=False)

    # Education
    year_of_passing: Mapped[Optional[str]] = mapped_column(String(4))
    degree_diploma: Mapped[Optional[str]] = mapped_column(String(255))
    name_of_university: Mapped[Optional[str]] = mapped_column(String(255))
    name_of_diploma: Mapped[Optional[str]] = mapped_column(String(255))
    education_type: Mapped[Optional[str]] = mapped_column(String(20))
    document_type: Mapped[Optional[str]] = mapped_column(String(20))

    # Name change
    have_changed_name: Mapped[Optional[str]] = mapped_column(String(3))
    previous_name: Mapped[Optional[str]] = mapped_column(String(255))
    name_change_document_type: Mapped[Optional[str]] = mapped_column(String(20))

    place: Mapped[Optional[str]] = mapped_column(String(255))
    declaration_date: Mapped[Optional[date]] = mapped_column(Date)

    # Status & lifecycle
    status: Mapped[SubmissionStatus] = mapped_column(
        _enum_column(SubmissionStatus),
        default=SubmissionStatus.PENDING,
        nullable=False,
    )
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Logical field name -> stored file metadata
    files: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    # Request metadata
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String(50), default="web", nullable=False)

    # Team attribution
    filled_by_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    filled_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    filled_by_phone: Mapped[Optional[str]] = mapped_column(String(20))
    form_source: Mapped[FormSource] = mapped_column(
        _enum_column(FormSource), default=FormSource.PUBLIC, nullable=False
    )
    filled_for_self: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    attachments: Mapped[List["FileAttachment"]] = relationship(
        back_populates="submission",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("sex IS NULL OR sex IN ('M', 'F')", name="ck_submissions_sex"),
        CheckConstraint(
            "age_years IS NULL OR (age_years >= 0 AND age_years <= 150)",
            name="ck_submissions_age_years",
        ),
        CheckConstraint(
            "age_months IS NULL OR (age_months >= 0 AND age_months <= 11)",
            name="ck_submissions_age_months",
        ),
        CheckConstraint("length(pin_code) = 6", name="ck_submissions_pin_code"),
        CheckConstraint(
            "length(mobile_number) = 10", name="ck_submissions_mobile_number"
        ),
        CheckConstraint(
            "length(aadhaar_number) = 12", name="ck_submissions_aadhaar_number"
        ),
        CheckConstraint(
            "have_changed_name IS NULL OR have_changed_name IN ('Yes', 'No')",
            name="ck_submissions_have_changed_name",
        ),
        CheckConstraint(
            "education_type IS NULL OR education_type IN ('degree', 'diploma')",
            name="ck_submissions_education_type",
        ),
        CheckConstraint(
            "document_type IS NULL OR document_type IN ('certificate', 'markmemo')",
            name="ck_submissions_document_type",
        ),
        CheckConstraint(
            "name_change_document_type IS NULL OR "
            "name_change_document_type IN ('marriage', 'gazette', 'pan')",
            name="ck_submissions_name_change_document_type",
        ),
        Index("idx_submissions_status", "status"),
        Index("idx_submissions_submitted_at", "submitted_at"),
        Index("idx_submissions_district", "district"),
        Index("idx_submissions_taluka", "taluka"),
        Index("idx_submissions_user_id", "user_id"),
        Index("idx_submissions_filled_by_user_id", "filled_by_user_id"),
        Index("idx_submissions_status_submitted_at", "status", "submitted_at"),
        Index("idx_submissions_district_taluka", "district", "taluka"),
        Index("idx_submissions_status_district", "status", "district"),
        # Uniqueness only among live rows, so a soft-deleted registration
        # frees its mobile and Aadhaar numbers
        Index(
            "uq_submissions_mobile_live",
            "mobile_number",
            unique=True,
            postgresql_where=text("status <> 'deleted'"),
            sqlite_where=text("status <> 'deleted'"),
        ),
        Index(
            "uq_submissions_aadhaar_live",
            "aadhaar_number",
            unique=True,
            postgresql_where=text("status <> 'deleted'"),
            sqlite_where=text("status <> 'deleted'"),
        ),
    )


class FileAttachment(Base):
    __tablename__ = "file_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    field_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    file_type: Mapped[Optional[str]] = mapped_column(String(100))
    mime_type: Mapped[Optional[str]] = mapped_column(String(100))
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    uploaded_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))

    submission: Mapped["Submission"] = relationship(back_populates="attachments")

    __table_args__ = (
        Index("idx_file_attachments_submission_id", "submission_id"),
        Index("idx_file_attachments_field_name", "field_name"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(255), nullable=False)
    record_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        _enum_column(AuditAction, length=10), nullable=False
    )
    old_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)
    new_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType)
    changed_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_audit_logs_table_record", "table_name", "record_id"),
        Index("idx_audit_logs_changed_at", "changed_at"),
        Index("idx_audit_logs_changed_by", "changed_by"),
    )


class Statistic(Base):
    """Cached aggregate keyed by metric name."""

    __tablename__ = "statistics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    metric_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    metric_value: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
