from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status

from voter_portal.middlewares.auth_middleware import (
    require_admin,
    require_supervisor,
    require_volunteer,
)
from voter_portal.schemas.submission_schemas import (
    BulkStatusUpdateRequest,
    StatusUpdateRequest,
    StatusView,
)
from voter_portal.schemas.user_schemas import UserRecord
from voter_portal.services.file_storage_service import (
    FileStorageService,
    get_file_storage_service,
)
from voter_portal.services.submissions_dal import SubmissionsDAL, get_submissions_dal
from voter_portal.utils.errors import NotFoundError
from voter_portal.utils.responses import ResponseBuilder

submissions_router = APIRouter()

SubmissionId = Annotated[str, Path(min_length=1, max_length=64)]


async def _get_submission_or_404(dal: SubmissionsDAL, submission_id: str):
    submission = await dal.get_by_id(submission_id)
    if submission is None:
        raise NotFoundError(
            f"Submission '{submission_id}' not found", "SUBMISSION_NOT_FOUND"
        )
    return submission


@submissions_router.get(
    "/check-duplicates",
    response_model=None,
    summary="Check whether a mobile or Aadhaar number is already registered",
    description="Early feedback for form clients; the submission itself re-checks.",
)
async def check_duplicates(
    request: Request,
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
    mobile_number: Annotated[
        Optional[str], Query(alias="mobileNumber", pattern=r"^[0-9]{10}$")
    ] = None,
    aadhaar_number: Annotated[
        Optional[str], Query(alias="aadhaarNumber", pattern=r"^[0-9]{12}$")
    ] = None,
):
    result = await dal.check_duplicates(mobile_number, aadhaar_number)
    return ResponseBuilder.success(
        request=request, data=result, message="Duplicate check completed"
    )


@submissions_router.get(
    "/search",
    response_model=None,
    dependencies=[Depends(require_volunteer)],
    summary="Search submissions by name, mobile or Aadhaar number",
)
async def search_submissions(
    request: Request,
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
    q: Annotated[str, Query(min_length=1, max_length=200)],
    limit: Annotated[int, Query(ge=1, le=20)] = 20,
):
    results = await dal.search(q, limit=limit)
    return ResponseBuilder.success(
        request=request,
        data=results,
        message=f"Found {len(results)} submissions",
    )


@submissions_router.get(
    "/stats",
    response_model=None,
    dependencies=[Depends(require_supervisor)],
    summary="Submission counts by status and recency",
)
async def get_submission_stats(
    request: Request,
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    statistics = await dal.get_statistics()
    return ResponseBuilder.success(
        request=request, data=statistics, message="Statistics retrieved"
    )


@submissions_router.post(
    "/bulk-status",
    response_model=None,
    summary="Set the review status of many submissions",
    description="Runs in one transaction; ids that cannot be updated are reported "
    "in `failed` while the rest are still applied.",
)
async def bulk_update_status(
    request: Request,
    body: BulkStatusUpdateRequest,
    current_user: Annotated[UserRecord, Depends(require_supervisor)],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    result = await dal.bulk_update_status(body.ids, body.status, changed_by=current_user.id)

    if result.failed:
        return ResponseBuilder.warning(
            request=request,
            data=result,
            message=f"Updated {result.updated} submissions, {len(result.failed)} failed",
            warnings=[f"Submission '{item}' could not be updated" for item in result.failed],
        )
    return ResponseBuilder.success(
        request=request,
        data=result,
        message=f"Updated {result.updated} submissions",
    )


@submissions_router.get(
    "/{submission_id}",
    response_model=None,
    dependencies=[Depends(require_volunteer)],
)
async def get_submission(
    request: Request,
    submission_id: SubmissionId,
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    submission = await _get_submission_or_404(dal, submission_id)
    return ResponseBuilder.success(
        request=request, data=submission, message="Submission retrieved"
    )


@submissions_router.get(
    "/{submission_id}/status",
    response_model=None,
    dependencies=[Depends(require_volunteer)],
)
async def get_submission_status(
    request: Request,
    submission_id: SubmissionId,
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    submission = await _get_submission_or_404(dal, submission_id)
    return ResponseBuilder.success(
        request=request,
        data=StatusView.model_validate(submission, from_attributes=True),
        message="Submission status retrieved",
    )


@submissions_router.patch("/{submission_id}/status", response_model=None)
async def update_submission_status(
    request: Request,
    submission_id: SubmissionId,
    body: StatusUpdateRequest,
    current_user: Annotated[UserRecord, Depends(require_volunteer)],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    """Approve, reject or reopen a submission"""
    submission = await dal.update_status(
        submission_id,
        body.status,
        changed_by=current_user.id,
        rejection_reason=body.rejection_reason,
    )
    return ResponseBuilder.success(
        request=request,
        data=StatusView.model_validate(submission, from_attributes=True),
        message=f"Submission {body.status}",
    )


@submissions_router.delete(
    "/{submission_id}",
    response_model=None,
    status_code=status.HTTP_200_OK,
    summary="Delete a submission",
    description="Soft delete by default; `hard=true` removes the row and its stored files.",
)
async def delete_submission(
    request: Request,
    submission_id: SubmissionId,
    current_user: Annotated[UserRecord, Depends(require_admin)],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
    storage: Annotated[FileStorageService, Depends(get_file_storage_service)],
    hard: bool = False,
):
    if hard:
        object_names = await dal.hard_delete(submission_id, changed_by=current_user.id)
        await storage.delete_files(object_names)
        return ResponseBuilder.success(
            request=request,
            data={"id": submission_id, "filesRemoved": len(object_names)},
            message="Submission permanently deleted",
        )

    await dal.delete(submission_id, changed_by=current_user.id)
    return ResponseBuilder.success(
        request=request, data={"id": submission_id}, message="Submission deleted"
    )
