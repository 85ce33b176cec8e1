from typing import Any, Dict, List, Optional
import uuid

from fastapi import status, Request
from fastapi.responses import JSONResponse
from voter_portal.schemas.response_schemas import (
    ApiResponse,
    PaginationMeta,
    ResponseStatus,
)
from voter_portal.utils.context import get_request_id


def _request_id(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or str(uuid.uuid4())
    )


class ResponseBuilder:
    """Builder class for creating standardized responses"""

    @staticmethod
    def success(
        request: Request,
        data: Any = None,
        message: str = "Request successful",
        meta: Optional[Dict[str, Any]] = None,
        pagination: Optional[PaginationMeta] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        """Create a success response"""
        response = ApiResponse(
            success=True,
            status=ResponseStatus.SUCCESS,
            message=message,
            data=data,
            meta=meta,
            pagination=pagination,
            request_id=_request_id(request),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=status_code,
            content=response.model_dump(by_alias=True, exclude_none=True),
        )

    @staticmethod
    def error(
        request: Request,
        message: str = "An error occurred",
        errors: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        data: Any = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        """Create an error response"""
        response_meta = {k: v for k, v in (meta or {}).items() if v is not None}
        if error_code:
            response_meta["error_code"] = error_code

        response = ApiResponse(
            success=False,
            status=ResponseStatus.ERROR,
            message=message,
            data=data,
            meta=response_meta if response_meta else None,
            errors=errors,
            request_id=_request_id(request),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=status_code,
            content=response.model_dump(by_alias=True, exclude_none=True),
        )

    @staticmethod
    def warning(
        request: Request,
        data: Any = None,
        message: str = "Request completed with warnings",
        warnings: Optional[List[str]] = None,
        meta: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> JSONResponse:
        """Create a warning response, used for partially successful bulk operations"""
        response = ApiResponse(
            success=True,
            status=ResponseStatus.WARNING,
            message=message,
            data=data,
            meta=meta,
            warnings=warnings,
            request_id=_request_id(request),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=status_code,
            content=response.model_dump(by_alias=True, exclude_none=True),
        )

    @staticmethod
    def paginated(
        request: Request,
        data: List[Any],
        total: int,
        limit: int,
        offset: int,
        message: str = "Data retrieved successfully",
        meta: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        """Create a limit/offset paginated response"""
        has_more = offset + len(data) < total

        pagination = PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            has_more=has_more,
            next_offset=offset + limit if has_more else None,
        )

        return ResponseBuilder.success(
            request=request,
            data=data,
            message=message,
            meta=meta,
            pagination=pagination,
        )
