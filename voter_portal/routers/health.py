from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from voter_portal.config.settings import settings
from voter_portal.db.database import Database, get_database
from voter_portal.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("")
async def health_check(request: Request):
    """
    Basic health check endpoint

    Returns application status and basic system information
    """
    return ResponseBuilder.success(
        request=request,
        data={
            "status": "healthy",
            "service": settings.NAME,
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
        },
        message="Service is running",
    )


@health_router.get("/database")
async def database_health_check(
    request: Request, database: Annotated[Database, Depends(get_database)]
):
    """Round-trip a query and report connection pool usage"""
    report = await database.health_check()
    if not report["healthy"]:
        return ResponseBuilder.error(
            request=request,
            message="Database is unavailable",
            error_code="DATABASE_UNHEALTHY",
            data=report,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return ResponseBuilder.success(
        request=request, data=report, message="Database is healthy"
    )
