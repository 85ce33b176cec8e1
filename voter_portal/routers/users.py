from typing import Annotated

from fastapi import APIRouter, Depends, Path, Request, status

from voter_portal.middlewares.auth_middleware import require_admin
from voter_portal.schemas.user_schemas import UserCreate, UserFilters, UserUpdate
from voter_portal.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from voter_portal.services.user_service import UserService, get_user_service
from voter_portal.utils.errors import NotFoundError
from voter_portal.utils.responses import ResponseBuilder

users_router = APIRouter(dependencies=[Depends(require_admin)])

UserId = Annotated[int, Path(ge=1)]


@users_router.get(
    "",
    response_model=None,
    summary="List team users",
    description="Filter by role, district, taluka, activation and free text over name, email and phone.",
)
async def list_users(
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


@users_router.post(
    "",
    response_model=None,
    status_code=status.HTTP_201_CREATED,
    summary="Create a team user",
)
async def create_user(
    request: Request,
    user_data: UserCreate,
    user_service: Annotated[UserService, Depends(get_user_service)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
):
    result = await user_service.create_user(user_data)
    queued = await dispatcher.dispatch(result.events)
    return ResponseBuilder.success(
        request=request,
        data=result.user,
        message="User created successfully",
        meta={"notifications_queued": len(queued)},
        status_code=status.HTTP_201_CREATED,
    )


@users_router.get("/stats", response_model=None)
async def get_user_stats(
    request: Request,
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    """User counts by activation, role and district"""
    stats = await user_service.get_user_stats()
    return ResponseBuilder.success(
        request=request, data=stats, message="User statistics retrieved"
    )


@users_router.get("/{user_id}", response_model=None)
async def get_user(
    request: Request,
    user_id: UserId,
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    user = await user_service.get_user_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", "USER_NOT_FOUND")
    return ResponseBuilder.success(request=request, data=user, message="User retrieved")


@users_router.patch("/{user_id}", response_model=None)
async def update_user(
    request: Request,
    user_id: UserId,
    patch: UserUpdate,
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    """Update only the fields present in the body"""
    user = await user_service.update_user(user_id, patch)
    return ResponseBuilder.success(
        request=request, data=user, message="User updated successfully"
    )


@users_router.delete("/{user_id}", response_model=None)
async def deactivate_user(
    request: Request,
    user_id: UserId,
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    """Deactivate a user; the row is kept and the user can no longer log in"""
    user = await user_service.deactivate_user(user_id)
    return ResponseBuilder.success(
        request=request, data=user, message="User deactivated successfully"
    )
