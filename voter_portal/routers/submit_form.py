from typing import Annotated, List, Optional, Tuple

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from pydantic import ValidationError

from voter_portal.config.settings import settings
from voter_portal.middlewares.auth_middleware import require_supervisor
from voter_portal.middlewares.rate_limit import form_rate_limit
from voter_portal.schemas.submission_schemas import (
    RequestMetadata,
    SubmissionCreate,
    SubmissionFilters,
    TeamMemberInfo,
)
from voter_portal.services.file_storage_service import (
    PUBLIC_ALLOWED_TYPES,
    FileStorageService,
    get_file_storage_service,
    validate_uploads,
)
from voter_portal.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from voter_portal.services.submissions_dal import SubmissionsDAL, get_submissions_dal
from voter_portal.utils.errors import DataValidationError
from voter_portal.utils.responses import ResponseBuilder

submit_form_router = APIRouter()


class SubmissionUploads:
    """The optional document uploads of a registration form"""

    def __init__(
        self,
        degree_certificate: Annotated[
            Optional[UploadFile], File(alias="degreeCertificate")
        ] = None,
        aadhaar_card: Annotated[Optional[UploadFile], File(alias="aadhaarCard")] = None,
        residential_proof: Annotated[
            Optional[UploadFile], File(alias="residentialProof")
        ] = None,
        marriage_certificate: Annotated[
            Optional[UploadFile], File(alias="marriageCertificate")
        ] = None,
        signature_photo: Annotated[
            Optional[UploadFile], File(alias="signaturePhoto")
        ] = None,
    ):
        candidates = (
            ("degreeCertificate", degree_certificate),
            ("aadhaarCard", aadhaar_card),
            ("residentialProof", residential_proof),
            ("marriageCertificate", marriage_certificate),
            ("signaturePhoto", signature_photo),
        )
        # Browsers send an empty part for file inputs left blank
        self.files: List[Tuple[str, UploadFile]] = [
            (field_name, upload)
            for field_name, upload in candidates
            if upload is not None and upload.filename
        ]


def parse_submission_payload(data: str) -> SubmissionCreate:
    """Parse the JSON ``data`` form field"""
    try:
        return SubmissionCreate.model_validate_json(data)
    except ValidationError as e:
        raise DataValidationError(
            [
                {
                    "field": ".".join(str(loc) for loc in error["loc"]) or "data",
                    "message": error["msg"],
                }
                for error in e.errors()
            ]
        )


def request_metadata(request: Request, source: str) -> RequestMetadata:
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = (
        forwarded.split(",")[0].strip()
        if forwarded
        else (request.client.host if request.client else None)
    )
    return RequestMetadata(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
        source=source,
    )


async def persist_submission(
    request: Request,
    payload: SubmissionCreate,
    uploads: List[Tuple[str, UploadFile]],
    team: TeamMemberInfo,
    dal: SubmissionsDAL,
    storage: FileStorageService,
    dispatcher: NotificationDispatcher,
    uploaded_by: Optional[int] = None,
):
    """
    Store uploads, insert the submission and queue its confirmation.

    Form fields are validated before anything is uploaded; if the insert
    fails the uploaded objects are removed again.
    """
    # user_id is the authenticated caller, if any
    payload = payload.model_copy(update={"user_id": uploaded_by})
    dal.validate(payload)

    stored = await storage.save_uploads(uploads)
    try:
        result = await dal.create(
            payload,
            files=stored,
            team=team,
            metadata=request_metadata(request, team.form_source.value),
            uploaded_by=uploaded_by,
        )
    except Exception:
        await storage.delete_files(item.filename for item in stored)
        raise

    queued = await dispatcher.dispatch(result.events)
    return ResponseBuilder.success(
        request=request,
        data=result.submission,
        message="Form submitted successfully",
        meta={"notifications_queued": len(queued)},
        status_code=status.HTTP_201_CREATED,
    )


@submit_form_router.post(
    "",
    response_model=None,
    dependencies=[Depends(form_rate_limit)],
    summary="Submit a public registration form",
    description="Multipart form with a JSON `data` field and optional document uploads. "
    "Fails with 409 when the mobile or Aadhaar number is already registered.",
)
async def submit_form(
    request: Request,
    data: Annotated[str, Form(description="Registration form as JSON")],
    uploads: Annotated[SubmissionUploads, Depends()],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
    storage: Annotated[FileStorageService, Depends(get_file_storage_service)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
):
    payload = parse_submission_payload(data)
    validate_uploads(
        uploads.files,
        max_size_mb=settings.MAX_UPLOAD_SIZE_MB,
        allowed_types=PUBLIC_ALLOWED_TYPES,
    )
    return await persist_submission(
        request,
        payload,
        uploads.files,
        TeamMemberInfo(filled_for_self=payload.filled_for_self),
        dal,
        storage,
        dispatcher,
    )


@submit_form_router.get(
    "",
    response_model=None,
    dependencies=[Depends(require_supervisor)],
    summary="List submissions",
)
async def list_submissions(
    request: Request,
    filters: Annotated[SubmissionFilters, Depends()],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    items, total = await dal.get_all(filters)
    return ResponseBuilder.paginated(
        request=request,
        data=items,
        total=total,
        limit=filters.limit,
        offset=filters.offset,
        message=f"Retrieved {len(items)} submissions",
    )
