from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from voter_portal.middlewares.auth_middleware import require_admin
from voter_portal.schemas.submission_schemas import SubmissionFilters
from voter_portal.schemas.user_schemas import UserFilters
from voter_portal.services.submissions_dal import SubmissionsDAL, get_submissions_dal
from voter_portal.services.user_service import UserService, get_user_service
from voter_portal.utils.datetime_utils import naive_utc_now
from voter_portal.utils.responses import ResponseBuilder

admin_router = APIRouter(dependencies=[Depends(require_admin)])


@admin_router.get("/submissions", response_model=None)
async def admin_list_submissions(
    request: Request,
    filters: Annotated[SubmissionFilters, Depends()],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    """All submissions, including deleted ones when filtered by status=deleted"""
    items, total = await dal.get_all(filters)
    return ResponseBuilder.paginated(
        request=request,
        data=items,
        total=total,
        limit=filters.limit,
        offset=filters.offset,
        message=f"Retrieved {len(items)} submissions",
    )


@admin_router.get(
    "/submissions/export",
    response_model=None,
    summary="Export submissions as CSV",
    description="Streams every submission matching the filters; pagination parameters are ignored.",
)
async def export_submissions(
    filters: Annotated[SubmissionFilters, Depends()],
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    filename = f"submissions_{naive_utc_now().strftime('%Y%m%d_%H%M%S')}.csv"
    return StreamingResponse(
        dal.export_csv(filters),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@admin_router.get("/users", response_model=None)
async def admin_list_users(
    request: Request,
    filters: Annotated[UserFilters, Depends()],
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    users, total = await user_service.get_users(filters)
    return ResponseBuilder.paginated(
        request=request,
        data=users,
        total=total,
        limit=filters.limit,
        offset=filters.offset,
        message=f"Retrieved {len(users)} users",
    )


@admin_router.get("/users/stats", response_model=None)
async def admin_user_stats(
    request: Request,
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    stats = await user_service.get_user_stats()
    return ResponseBuilder.success(
        request=request, data=stats, message="User statistics retrieved"
    )


@admin_router.get(
    "/statistics",
    response_model=None,
    summary="Dashboard statistics",
    description="Served from the statistics cache and recomputed once it expires.",
)
async def dashboard_statistics(
    request: Request,
    dal: Annotated[SubmissionsDAL, Depends(get_submissions_dal)],
):
    statistics = await dal.get_cached_statistics()
    return ResponseBuilder.success(
        request=request, data=statistics, message="Statistics retrieved"
    )
