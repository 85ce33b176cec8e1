from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from voter_portal.middlewares.auth_middleware import require_volunteer
from voter_portal.middlewares.rate_limit import auth_rate_limit
from voter_portal.schemas.auth_schemas import LoginRequest
from voter_portal.schemas.user_schemas import UserRecord
from voter_portal.services.auth_service import AuthService, get_auth_service
from voter_portal.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)
from voter_portal.utils.responses import ResponseBuilder

auth_router = APIRouter()


@auth_router.post(
    "/login",
    response_model=None,
    dependencies=[Depends(auth_rate_limit)],
    summary="Log in, or register a volunteer account",
    description="With action=login verifies email or phone credentials and returns a bearer token. "
    "With action=register creates a volunteer account and logs it in.",
)
async def login(
    login_request: LoginRequest,
    request: Request,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_notification_dispatcher)],
):
    if login_request.action == "register":
        result, events = await auth_service.register(login_request)
        await dispatcher.dispatch(events)
        return ResponseBuilder.success(
            request=request,
            data=result,
            message="Registration successful",
            status_code=status.HTTP_201_CREATED,
        )

    result = await auth_service.authenticate_user(
        login_request.login_field, login_request.password, login_request.login_type
    )
    return ResponseBuilder.success(
        request=request, data=result, message="Login successful"
    )


@auth_router.get("/me", response_model=None)
async def get_current_user_info(
    request: Request,
    current_user: Annotated[UserRecord, Depends(require_volunteer)],
):
    """Get current authenticated user information"""
    return ResponseBuilder.success(
        request=request, data=current_user, message="User information retrieved"
    )
