import csv
import io
import re
import secrets
import string
import time
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple, Union

from fastapi import Depends
from pydantic.alias_generators import to_camel
from sqlalchemy import case, delete, func, literal_column, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voter_portal.config.settings import settings
from voter_portal.db.database import Database, get_database
from voter_portal.db.models import (
    AuditAction,
    AuditLog,
    FileAttachment,
    FormSource,
    Statistic,
    Submission,
    SubmissionStatus,
)
from voter_portal.schemas.submission_schemas import (
    BulkStatusUpdateResult,
    DuplicateCheckResult,
    RequestMetadata,
    StoredFile,
    SubmissionCreate,
    SubmissionFilters,
    SubmissionRecord,
    SubmissionStatistics,
    SubmissionWriteResult,
    TeamMemberInfo,
)
from voter_portal.schemas.user_schemas import EMAIL_PATTERN, CountByValue
from voter_portal.services.notification_service import build_submission_confirmation
from voter_portal.utils.datetime_utils import (
    days_ago_utc,
    format_local_datetime,
    naive_utc_now,
    start_of_today_utc,
    strictly_after,
    to_naive_utc,
)
from voter_portal.utils.errors import (
    BusinessLogicError,
    DataValidationError,
    DuplicateSubmissionError,
    NotFoundError,
)
from voter_portal.utils.logging import get_logger

logger = get_logger()

LIVE = Submission.status != SubmissionStatus.DELETED

STATISTICS_METRIC = "submission_statistics"
SEARCH_LIMIT = 20
TOP_GROUPS = 10
EXPORT_BATCH_SIZE = 500

# Same expression as the GIN index created by db.create_indexes
SEARCH_DOCUMENT = literal_column(
    "to_tsvector('english', "
    "surname || ' ' || first_name || ' ' || mobile_number || ' ' || aadhaar_number)"
)

CSV_COLUMNS = (
    ("id", "Registration ID"),
    ("surname", "Surname"),
    ("first_name", "First Name"),
    ("fathers_husband_name", "Father/Husband Name"),
    ("sex", "Sex"),
    ("date_of_birth", "Date of Birth"),
    ("age_years", "Age (Years)"),
    ("age_months", "Age (Months)"),
    ("district", "District"),
    ("taluka", "Taluka"),
    ("village_name", "Village"),
    ("house_no", "House No"),
    ("street", "Street"),
    ("pin_code", "PIN Code"),
    ("mobile_number", "Mobile"),
    ("email", "Email"),
    ("aadhaar_number", "Aadhaar"),
    ("qualification", "Qualification"),
    ("occupation", "Occupation"),
    ("education_type", "Education Type"),
    ("degree_diploma", "Degree/Diploma"),
    ("name_of_university", "University"),
    ("year_of_passing", "Year of Passing"),
    ("have_changed_name", "Name Changed"),
    ("previous_name", "Previous Name"),
    ("status", "Status"),
    ("form_source", "Form Source"),
    ("filled_by_name", "Filled By"),
    ("submitted_at", "Submitted At"),
    ("updated_at", "Updated At"),
)

_DIGITS = {
    "pin_code": (6, "Valid 6-digit PIN code is required"),
    "mobile_number": (10, "Valid 10-digit mobile number is required"),
    "aadhaar_number": (12, "Valid 12-digit Aadhaar number is required"),
}

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_submission_id() -> str:
    """Opaque id of the form ``SUB_<epoch ms>_<6 base36 chars>``"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"SUB_{int(time.time() * 1000)}_{suffix}"


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _error(field: str, message: str) -> Dict[str, str]:
    return {"field": to_camel(field), "message": message}


def _duplicate_field(error: IntegrityError) -> Optional[str]:
    """Which live-uniqueness index a flush violated, if any"""
    message = str(error.orig).lower()
    if "unique" not in message:
        return None
    if "mobile" in message:
        return "mobileNumber"
    if "aadhaar" in message:
        return "aadhaarNumber"
    return None


def _status_snapshot(row: Submission) -> Dict[str, Any]:
    return {
        "status": row.status.value,
        "approved_by": row.approved_by,
        "approved_at": row.approved_at.isoformat() if row.approved_at else None,
        "rejection_reason": row.rejection_reason,
        "updated_at": row.updated_at.isoformat(),
    }


class SubmissionsDAL:
    """
    Data access for the ``submissions`` table.

    Every default read starts from ``_live()`` so soft-deleted rows never
    leak into listings, lookups or statistics. Writes run inside
    ``Database.transaction`` and return notification events for the caller
    to dispatch once the transaction has committed.
    """

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _live():
        return select(Submission).where(LIVE)

    # Validation

    def validate(self, data: SubmissionCreate) -> None:
        """Raise ``DataValidationError`` listing every offending field"""
        errors: List[Dict[str, str]] = []

        for field, label in (
            ("surname", "Surname"),
            ("first_name", "First name"),
            ("district", "District"),
            ("taluka", "Taluka"),
        ):
            if _blank(getattr(data, field)):
                errors.append(_error(field, f"{label} is required"))

        for field, (length, message) in _DIGITS.items():
            value = getattr(data, field)
            if _blank(value) or not re.fullmatch(rf"[0-9]{{{length}}}", value):
                errors.append(_error(field, message))

        if data.email and not re.match(EMAIL_PATTERN, data.email):
            errors.append(_error("email", "Valid email address is required"))

        if data.education_type:
            if _blank(data.degree_diploma):
                errors.append(
                    _error(
                        "degree_diploma",
                        "Degree/Diploma name is required when education type is selected",
                    )
                )
            if _blank(data.name_of_university):
                errors.append(
                    _error(
                        "name_of_university",
                        "University/Institution name is required when education type is selected",
                    )
                )
            if _blank(data.document_type):
                errors.append(
                    _error(
                        "document_type",
                        "Document type is required when education type is selected",
                    )
                )

        if data.have_changed_name == "Yes":
            if _blank(data.previous_name):
                errors.append(
                    _error(
                        "previous_name", "Previous name is required when name was changed"
                    )
                )
            if _blank(data.name_change_document_type):
                errors.append(
                    _error(
                        "name_change_document_type",
                        "Document type for name change is required when name was changed",
                    )
                )

        if data.year_of_passing and not re.fullmatch(r"[0-9]{4}", data.year_of_passing):
            errors.append(_error("year_of_passing", "Year of passing must be 4 digits"))
        if data.age_years is not None and not 0 <= data.age_years <= 150:
            errors.append(_error("age_years", "Age must be between 0 and 150 years"))
        if data.age_months is not None and not 0 <= data.age_months <= 11:
            errors.append(_error("age_months", "Age months must be between 0 and 11"))

        if errors:
            raise DataValidationError(errors)

    # Writes

    async def _ensure_unique(
        self, session: AsyncSession, mobile_number: str, aadhaar_number: str
    ) -> None:
        stmt = (
            select(Submission.mobile_number, Submission.aadhaar_number)
            .where(LIVE)
            .where(
                or_(
                    Submission.mobile_number == mobile_number,
                    Submission.aadhaar_number == aadhaar_number,
                )
            )
            .limit(1)
        )
        existing = (await session.execute(stmt)).first()
        if existing is None:
            return
        if existing.mobile_number == mobile_number:
            raise DuplicateSubmissionError(
                "A submission with this mobile number already exists",
                field="mobileNumber",
            )
        raise DuplicateSubmissionError(
            "A submission with this Aadhaar number already exists",
            field="aadhaarNumber",
        )

    async def create(
        self,
        data: SubmissionCreate,
        files: Optional[Sequence[StoredFile]] = None,
        team: Optional[TeamMemberInfo] = None,
        metadata: Optional[RequestMetadata] = None,
        uploaded_by: Optional[int] = None,
    ) -> SubmissionWriteResult:
        """
        Validate and insert one submission.

        The duplicate check and the insert share one transaction; the partial
        unique indexes catch the race where two requests pass the check at
        the same time.

        Returns:
            SubmissionWriteResult with the stored row and its confirmation event
        """
        self.validate(data)
        files = list(files or [])
        team = team or TeamMemberInfo(filled_for_self=data.filled_for_self)
        metadata = metadata or RequestMetadata()

        values = {
            name: getattr(data, name)
            for name in SubmissionCreate.model_fields
            if name != "filled_for_self"
        }

        async def _create(session: AsyncSession) -> SubmissionRecord:
            await self._ensure_unique(session, data.mobile_number, data.aadhaar_number)

            now = naive_utc_now()
            row = Submission(
                id=generate_submission_id(),
                **values,
                status=SubmissionStatus.PENDING,
                submitted_at=now,
                updated_at=now,
                files={
                    stored.field_name: stored.model_dump(by_alias=True)
                    for stored in files
                },
                ip_address=metadata.ip_address,
                user_agent=metadata.user_agent,
                source=metadata.source,
                filled_by_user_id=team.filled_by_user_id,
                filled_by_name=team.filled_by_name,
                filled_by_phone=team.filled_by_phone,
                form_source=team.form_source,
                filled_for_self=team.filled_for_self,
            )
            session.add(row)
            for stored in files:
                session.add(
                    FileAttachment(
                        submission_id=row.id,
                        field_name=stored.field_name,
                        original_name=stored.original_name,
                        file_path=stored.filename,
                        file_size=stored.size,
                        file_type=stored.original_name.rsplit(".", 1)[-1].lower()
                        if "." in stored.original_name
                        else None,
                        mime_type=stored.mime_type,
                        uploaded_at=stored.uploaded_at,
                        uploaded_by=uploaded_by,
                    )
                )
            session.add(
                AuditLog(
                    table_name="submissions",
                    record_id=row.id,
                    action=AuditAction.INSERT,
                    new_values={
                        "status": SubmissionStatus.PENDING.value,
                        "form_source": team.form_source.value,
                        "district": row.district,
                        "taluka": row.taluka,
                    },
                    changed_by=uploaded_by or team.filled_by_user_id,
                    ip_address=metadata.ip_address,
                    user_agent=metadata.user_agent,
                )
            )

            try:
                await session.flush()
            except IntegrityError as e:
                field = _duplicate_field(e)
                if field is None:
                    raise
                raise DuplicateSubmissionError(
                    "A submission with this mobile or Aadhaar number already exists",
                    field=field,
                ) from e

            return SubmissionRecord.model_validate(row)

        record = await self.database.transaction(_create)
        logger.info(
            f"Created submission {record.id} ({record.form_source.value}, "
            f"{len(files)} files)"
        )
        return SubmissionWriteResult(
            submission=record, events=[build_submission_confirmation(record)]
        )

    async def _select_row(
        self,
        session: AsyncSession,
        submission_id: str,
        for_update: bool = False,
        include_deleted: bool = False,
    ) -> Optional[Submission]:
        stmt = (
            select(Submission).where(Submission.id == submission_id)
            if include_deleted
            else self._live().where(Submission.id == submission_id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _locked_row(
        self, session: AsyncSession, submission_id: str
    ) -> Submission:
        row = await self._select_row(session, submission_id, for_update=True)
        if row is None:
            raise NotFoundError(
                f"Submission '{submission_id}' not found", "SUBMISSION_NOT_FOUND"
            )
        return row

    @staticmethod
    def _review_status(status: Union[str, SubmissionStatus]) -> SubmissionStatus:
        status = SubmissionStatus(status)
        if status == SubmissionStatus.DELETED:
            raise BusinessLogicError(
                "Use the delete operation to remove a submission", "INVALID_STATUS"
            )
        return status

    async def _write_status(
        self,
        session: AsyncSession,
        submission_id: str,
        status: SubmissionStatus,
        changed_by: Optional[int],
        rejection_reason: Optional[str],
    ) -> Submission:
        row = await self._locked_row(session, submission_id)
        old_values = _status_snapshot(row)
        now = strictly_after(row.updated_at)

        row.status = status
        row.updated_at = now
        if status == SubmissionStatus.APPROVED:
            row.approved_by = changed_by
            row.approved_at = now
            row.rejection_reason = None
        elif status == SubmissionStatus.REJECTED:
            row.approved_by = None
            row.approved_at = None
            row.rejection_reason = rejection_reason
        else:
            row.approved_by = None
            row.approved_at = None
            row.rejection_reason = None

        session.add(
            AuditLog(
                table_name="submissions",
                record_id=row.id,
                action=AuditAction.UPDATE,
                old_values=old_values,
                new_values=_status_snapshot(row),
                changed_by=changed_by,
                changed_at=now,
            )
        )
        await session.flush()
        return row

    async def update_status(
        self,
        submission_id: str,
        status: Union[str, SubmissionStatus],
        changed_by: Optional[int] = None,
        rejection_reason: Optional[str] = None,
    ) -> SubmissionRecord:
        """Locked read then write; concurrent updates of one row serialize"""
        status = self._review_status(status)

        async def _update(session: AsyncSession) -> SubmissionRecord:
            row = await self._write_status(
                session, submission_id, status, changed_by, rejection_reason
            )
            return SubmissionRecord.model_validate(row)

        record = await self.database.transaction(_update)
        logger.info(f"Submission {submission_id} set to {status.value}")
        return record

    async def bulk_update_status(
        self,
        ids: Sequence[str],
        status: Union[str, SubmissionStatus],
        changed_by: Optional[int] = None,
    ) -> BulkStatusUpdateResult:
        """
        Apply ``update_status`` to each id in one transaction.

        Each id runs in its own savepoint, so a missing id or a failed write
        is recorded in ``failed`` and the remaining ids still commit.
        """
        status = self._review_status(status)

        async def _bulk(session: AsyncSession) -> BulkStatusUpdateResult:
            updated = 0
            failed: List[str] = []
            for submission_id in dict.fromkeys(ids):
                try:
                    async with session.begin_nested():
                        await self._write_status(
                            session, submission_id, status, changed_by, None
                        )
                    updated += 1
                except (NotFoundError, SQLAlchemyError) as e:
                    logger.warning(
                        f"Bulk status update skipped {submission_id}: {type(e).__name__}"
                    )
                    failed.append(submission_id)
            return BulkStatusUpdateResult(updated=updated, failed=failed)

        result = await self.database.transaction(_bulk)
        logger.info(
            f"Bulk status {status.value}: {result.updated} updated, "
            f"{len(result.failed)} failed"
        )
        return result

    async def delete(
        self, submission_id: str, changed_by: Optional[int] = None
    ) -> SubmissionRecord:
        """Soft delete: the row stays, with status ``deleted``"""

        async def _delete(session: AsyncSession) -> SubmissionRecord:
            row = await self._locked_row(session, submission_id)
            old_values = _status_snapshot(row)
            row.status = SubmissionStatus.DELETED
            row.updated_at = strictly_after(row.updated_at)
            session.add(
                AuditLog(
                    table_name="submissions",
                    record_id=row.id,
                    action=AuditAction.DELETE,
                    old_values=old_values,
                    new_values=_status_snapshot(row),
                    changed_by=changed_by,
                )
            )
            await session.flush()
            return SubmissionRecord.model_validate(row)

        record = await self.database.transaction(_delete)
        logger.info(f"Soft-deleted submission {submission_id}")
        return record

    async def hard_delete(
        self, submission_id: str, changed_by: Optional[int] = None
    ) -> List[str]:
        """
        Irreversibly remove a submission and its attachment rows.

        Returns the object names of its stored files so the caller can clean
        up the file store.
        """

        async def _hard_delete(session: AsyncSession) -> List[str]:
            row = await session.get(Submission, submission_id, with_for_update=True)
            if row is None:
                raise NotFoundError(
                    f"Submission '{submission_id}' not found", "SUBMISSION_NOT_FOUND"
                )
            old_values = _status_snapshot(row)
            object_names = [
                entry["filename"]
                for entry in (row.files or {}).values()
                if isinstance(entry, dict) and entry.get("filename")
            ]
            await session.execute(
                delete(FileAttachment).where(
                    FileAttachment.submission_id == submission_id
                )
            )
            await session.delete(row)
            session.add(
                AuditLog(
                    table_name="submissions",
                    record_id=submission_id,
                    action=AuditAction.DELETE,
                    old_values=old_values,
                    new_values={"hard_delete": True},
                    changed_by=changed_by,
                )
            )
            await session.flush()
            return object_names

        object_names = await self.database.transaction(_hard_delete)
        logger.warning(f"Hard-deleted submission {submission_id}")
        return object_names

    # Reads

    @staticmethod
    def _filter_conditions(filters: SubmissionFilters) -> List[Any]:
        if filters.status == SubmissionStatus.DELETED.value:
            conditions = [Submission.status == SubmissionStatus.DELETED]
        else:
            conditions = [LIVE]
            if filters.status:
                conditions.append(Submission.status == SubmissionStatus(filters.status))

        if filters.district:
            conditions.append(Submission.district == filters.district)
        if filters.taluka:
            conditions.append(Submission.taluka == filters.taluka)
        if filters.user_id is not None:
            conditions.append(Submission.user_id == filters.user_id)
        if filters.filled_by_user_id is not None:
            conditions.append(Submission.filled_by_user_id == filters.filled_by_user_id)
        if filters.form_source:
            conditions.append(Submission.form_source == FormSource(filters.form_source))
        if filters.date_from:
            conditions.append(Submission.submitted_at >= to_naive_utc(filters.date_from))
        if filters.date_to:
            conditions.append(Submission.submitted_at <= to_naive_utc(filters.date_to))
        if filters.search and filters.search.strip():
            pattern = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    Submission.surname.ilike(pattern),
                    Submission.first_name.ilike(pattern),
                    Submission.mobile_number.ilike(pattern),
                    Submission.aadhaar_number.ilike(pattern),
                )
            )
        return conditions

    async def get_all(
        self, filters: Optional[SubmissionFilters] = None
    ) -> Tuple[List[SubmissionRecord], int]:
        """Page of submissions, newest first, plus the total under the same filter"""
        filters = filters or SubmissionFilters()
        conditions = self._filter_conditions(filters)

        count_stmt = select(func.count()).select_from(Submission).where(*conditions)
        page_stmt = (
            select(Submission)
            .where(*conditions)
            .order_by(Submission.submitted_at.desc(), Submission.id.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )

        async with self.database.session() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(page_stmt)).scalars().all()

        return [SubmissionRecord.model_validate(row) for row in rows], total

    async def get_by_id(
        self,
        submission_id: str,
        for_update: bool = False,
        include_deleted: bool = False,
        session: Optional[AsyncSession] = None,
    ) -> Optional[SubmissionRecord]:
        """
        Fetch one submission.

        ``for_update`` only holds the row lock when ``session`` is the caller's
        open transaction (see ``Database.transaction``); without a session the
        lookup runs in its own short-lived session.
        """
        if session is not None:
            row = await self._select_row(
                session, submission_id, for_update, include_deleted
            )
        else:
            async with self.database.session() as own_session:
                row = await self._select_row(
                    own_session, submission_id, for_update, include_deleted
                )
        return SubmissionRecord.model_validate(row) if row else None

    async def search(self, text: str, limit: int = SEARCH_LIMIT) -> List[SubmissionRecord]:
        """Full-text search on PostgreSQL, substring match elsewhere"""
        text = (text or "").strip()
        if not text:
            return []

        if self.database.dialect_name == "postgresql":
            query = func.plainto_tsquery("english", text)
            stmt = (
                self._live()
                .where(SEARCH_DOCUMENT.op("@@")(query))
                .order_by(
                    func.ts_rank(SEARCH_DOCUMENT, query).desc(),
                    Submission.submitted_at.desc(),
                )
                .limit(limit)
            )
        else:
            pattern = f"%{text}%"
            stmt = (
                self._live()
                .where(
                    or_(
                        Submission.surname.ilike(pattern),
                        Submission.first_name.ilike(pattern),
                        Submission.mobile_number.ilike(pattern),
                        Submission.aadhaar_number.ilike(pattern),
                    )
                )
                .order_by(Submission.submitted_at.desc())
                .limit(limit)
            )

        async with self.database.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [SubmissionRecord.model_validate(row) for row in rows]

    async def _top_groups(self, session: AsyncSession, column) -> List[CountByValue]:
        count = func.count().label("count")
        stmt = (
            select(column, count)
            .where(LIVE)
            .group_by(column)
            .order_by(count.desc(), column)
            .limit(TOP_GROUPS)
        )
        rows = (await session.execute(stmt)).all()
        return [CountByValue(value=value, count=total) for value, total in rows]

    async def get_statistics(self) -> SubmissionStatistics:
        """Status and recency counts over live submissions"""
        today = start_of_today_utc()
        week_ago = days_ago_utc(7)
        month_ago = days_ago_utc(30)

        def _count_where(condition):
            return func.count(case((condition, 1)))

        stmt = select(
            func.count().label("total"),
            _count_where(Submission.status == SubmissionStatus.PENDING).label("pending"),
            _count_where(Submission.status == SubmissionStatus.APPROVED).label("approved"),
            _count_where(Submission.status == SubmissionStatus.REJECTED).label("rejected"),
            _count_where(Submission.submitted_at >= today).label("today"),
            _count_where(Submission.submitted_at >= week_ago).label("this_week"),
            _count_where(Submission.submitted_at >= month_ago).label("this_month"),
        ).where(LIVE)

        async with self.database.session() as session:
            counts = (await session.execute(stmt)).mappings().one()
            by_district = await self._top_groups(session, Submission.district)
            by_taluka = await self._top_groups(session, Submission.taluka)

        return SubmissionStatistics(
            **dict(counts), by_district=by_district, by_taluka=by_taluka
        )

    async def get_cached_statistics(
        self, max_age_seconds: Optional[int] = None
    ) -> SubmissionStatistics:
        """Statistics served from the ``statistics`` table until they expire"""
        max_age_seconds = max_age_seconds or settings.STATISTICS_CACHE_SECONDS
        now = naive_utc_now()

        async with self.database.session() as session:
            cached = (
                await session.execute(
                    select(Statistic).where(Statistic.metric_name == STATISTICS_METRIC)
                )
            ).scalar_one_or_none()
        if cached is not None and cached.expires_at and cached.expires_at > now:
            return SubmissionStatistics.model_validate(cached.metric_value)

        statistics = await self.get_statistics()
        payload = statistics.model_dump()

        async def _store(session: AsyncSession) -> None:
            row = (
                await session.execute(
                    select(Statistic)
                    .where(Statistic.metric_name == STATISTICS_METRIC)
                    .with_for_update()
                )
            ).scalar_one_or_none()
            calculated_at = naive_utc_now()
            expires_at = calculated_at + timedelta(seconds=max_age_seconds)
            if row is None:
                session.add(
                    Statistic(
                        metric_name=STATISTICS_METRIC,
                        metric_value=payload,
                        calculated_at=calculated_at,
                        expires_at=expires_at,
                    )
                )
            else:
                row.metric_value = payload
                row.calculated_at = calculated_at
                row.expires_at = expires_at

        await self.database.transaction(_store)
        return statistics

    async def check_duplicates(
        self, mobile_number: Optional[str] = None, aadhaar_number: Optional[str] = None
    ) -> DuplicateCheckResult:
        """Early feedback for clients; ``create`` remains the authoritative check"""

        async def _exists(session: AsyncSession, condition) -> bool:
            stmt = select(Submission.id).where(LIVE).where(condition).limit(1)
            return (await session.execute(stmt)).first() is not None

        async with self.database.session() as session:
            mobile_exists = bool(mobile_number) and await _exists(
                session, Submission.mobile_number == mobile_number
            )
            aadhaar_exists = bool(aadhaar_number) and await _exists(
                session, Submission.aadhaar_number == aadhaar_number
            )

        return DuplicateCheckResult(
            mobile_exists=mobile_exists, aadhaar_exists=aadhaar_exists
        )

    async def export_csv(
        self, filters: Optional[SubmissionFilters] = None
    ) -> AsyncIterator[str]:
        """
        Yield the filtered submissions as CSV text, header first.

        ``limit`` and ``offset`` of the filters are ignored; rows are read in
        batches so large exports never sit in memory at once.
        """
        filters = filters or SubmissionFilters()
        conditions = self._filter_conditions(filters)

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow([title for _, title in CSV_COLUMNS])
        yield _drain(buffer)

        offset = 0
        while True:
            stmt = (
                select(Submission)
                .where(*conditions)
                .order_by(Submission.submitted_at.desc(), Submission.id.desc())
                .limit(EXPORT_BATCH_SIZE)
                .offset(offset)
            )
            async with self.database.session() as session:
                rows = (await session.execute(stmt)).scalars().all()
            if not rows:
                break

            for row in rows:
                writer.writerow([_csv_value(row, name) for name, _ in CSV_COLUMNS])
            yield _drain(buffer)

            if len(rows) < EXPORT_BATCH_SIZE:
                break
            offset += EXPORT_BATCH_SIZE


def _drain(buffer: io.StringIO) -> str:
    chunk = buffer.getvalue()
    buffer.seek(0)
    buffer.truncate(0)
    return chunk


def _csv_value(row: Submission, name: str) -> Any:
    value = getattr(row, name)
    if value is None:
        return ""
    if isinstance(value, (SubmissionStatus, FormSource)):
        return value.value
    if name in ("submitted_at", "updated_at"):
        return format_local_datetime(value)
    return value


def get_submissions_dal(database: Database = Depends(get_database)) -> SubmissionsDAL:
    """Dependency function to get SubmissionsDAL instance"""
    return SubmissionsDAL(database)
