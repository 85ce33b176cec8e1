from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from voter_portal.middlewares.auth_middleware import require_volunteer
from voter_portal.services.file_storage_service import (
    FileStorageService,
    get_file_storage_service,
)
from voter_portal.utils.responses import ResponseBuilder

files_router = APIRouter(dependencies=[Depends(require_volunteer)])


@files_router.get(
    "/{object_name:path}",
    response_model=None,
    summary="Download a stored document",
    description="Redirects to a short-lived presigned URL, or returns the URL when redirect=false.",
)
async def get_file(
    request: Request,
    object_name: str,
    storage: Annotated[FileStorageService, Depends(get_file_storage_service)],
    redirect: bool = True,
    expires_in_hours: Annotated[int, Query(ge=1, le=168)] = 1,
):
    url = await storage.generate_presigned_url(object_name, expires_in_hours)
    if redirect:
        return RedirectResponse(url, status_code=307)
    return ResponseBuilder.success(
        request=request,
        data={"presignedUrl": url, "expiresInHours": expires_in_hours},
        message=f"Generated presigned URL for {object_name}",
    )
