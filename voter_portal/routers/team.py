from typing import Annotated

from fastapi import APIRouter, Depends, Form, Request, status

from voter_portal.config.settings import settings
from voter_portal.db.models import FormSource, UserRole
from voter_portal.middlewares.auth_middleware import require_volunteer
from voter_portal.middlewares.rate_limit import auth_rate_limit, upload_rate_limit
from voter_portal.routers.submit_form import (
    SubmissionUploads,
    parse_submission_payload,
    persist_submission,
)
from voter_portal.schemas.auth_schemas import LoginResult, TeamSignupRequest
from voter_portal.schemas.submission_schemas import SubmissionFilters, TeamMemberInfo
from voter_portal.schemas.user_schemas import UserRecord
from voter_portal.services.auth_service import AuthService
from voter_portal.services.file_storage_service import (
    TEAM_ALLOWED_TYPES,
    FileStorageService,
    get_file_storage_service,
    validate_uploads,
)
from voter_portal.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from voter_portal.services.submissions_dal import SubmissionsDAL, get_submissions_dal
from voter_portal.services.user_service import UserService, get_user_service
from voter_portal.utils.responses import ResponseBuilder

team_signup_router = APIRouter()
team_router = APIRouter()


@team_signup_router.post(
    "",
    response_model=None,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
    summary="Sign up as a team volunteer",
    description="Creates a volunteer account keyed by phone number and returns a bearer token.",
)
async def team_signup(
    request: Request,
    signup: TeamSignupRequest,
    user_service: Annotated[UserService, Depends(get_user_service)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
):
    result = await user_service.register_team_member(signup)
    queued = await dispatcher.dispatch(result.events)
    return ResponseBuilder.success(
        request=request,
        data=LoginResult(token=AuthService.issue_token(result.user), user=result.user),
        message="Account created successfully",
        meta={"notifications_queued": len(queued)},
        status_code=status.HTTP_201_CREATED,
    )


@team_router.get(
    "/submit-form",
    response_model=None,
    summary="List submissions visible to the calling team member",
    description="Volunteers see the submissions they entered; supervisors are scoped to "
    "their district and taluka when those are set; admins see everything.",
)
async def list_team_submissions(
    request: Request,
    filters: Annotated[SubmissionFilters, Depends()],
    current_user: Annotated[UserRecord, Depends(require_volunteer)],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    scope = {}
    if current_user.role == UserRole.VOLUNTEER:
        scope["filled_by_user_id"] = current_user.id
    elif current_user.role == UserRole.SUPERVISOR:
        if current_user.district:
            scope["district"] = current_user.district
        if current_user.taluka:
            scope["taluka"] = current_user.taluka
    scoped_filters = filters.model_copy(update=scope)

    items, total = await dal.get_all(scoped_filters)
    return ResponseBuilder.paginated(
        request=request,
        data=items,
        total=total,
        limit=scoped_filters.limit,
        offset=scoped_filters.offset,
        message=f"Retrieved {len(items)} team submissions",
    )


@team_router.post(
    "/submit-form",
    response_model=None,
    dependencies=[Depends(upload_rate_limit)],
    summary="Submit a registration on a citizen's behalf",
)
async def submit_team_form(
    request: Request,
    data: Annotated[str, Form(description="Registration form as JSON")],
    uploads: Annotated[SubmissionUploads, Depends()],
    current_user: Annotated[UserRecord, Depends(require_volunteer)],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
    storage: Annotated[FileStorageService, Depends(get_file_storage_service)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
):
    payload = parse_submission_payload(data)
    validate_uploads(
        uploads.files,
        max_size_mb=settings.TEAM_MAX_UPLOAD_SIZE_MB,
        allowed_types=TEAM_ALLOWED_TYPES,
        max_files=settings.TEAM_MAX_FILES,
    )
    team = TeamMemberInfo(
        filled_by_user_id=current_user.id,
        filled_by_name=current_user.full_name or current_user.email,
        filled_by_phone=current_user.phone,
        form_source=FormSource.TEAM,
        filled_for_self=payload.filled_for_self,
    )
    return await persist_submission(
        request,
        payload,
        uploads.files,
        team,
        dal,
        storage,
        dispatcher,
        uploaded_by=current_user.id,
    )
