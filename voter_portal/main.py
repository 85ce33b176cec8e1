from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voter_portal.config.settings import settings
from voter_portal.db.database import Database
from voter_portal.utils.logging import get_logger
from voter_portal.routers import api_router
from voter_portal.utils.errors import setup_error_handlers
from voter_portal.middlewares import (
    RateLimitHeadersMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)

# Initialize the logger
logger = get_logger()


def create_application(database: Optional[Database] = None) -> FastAPI:
    """
    Initialize the FastAPI application with settings and lifespan events.

    A ``database`` passed in is used as-is and left open on shutdown;
    otherwise the lifespan opens one from settings and closes it.
    """

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        logger.info("Voter Portal is starting up...")
        owned = database is None
        application.state.database = Database() if owned else database
        try:
            yield
        finally:
            if owned:
                await application.state.database.close()
            logger.info("Voter Portal is shutting down...")

    application = FastAPI(
        title=settings.NAME, version=settings.VERSION, lifespan=lifespan
    )
    if database is not None:
        application.state.database = database

    # Setup error handlers
    setup_error_handlers(application)

    # Add CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "authorization"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
    )

    # Add custom middlewares
    application.add_middleware(
        SecurityHeadersMiddleware, environment=settings.ENVIRONMENT
    )
    application.add_middleware(RateLimitHeadersMiddleware)
    application.add_middleware(RequestIDMiddleware)

    # Routers
    application.include_router(api_router, prefix=settings.API_PREFIX)

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "voter_portal.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_config=None,
        log_level=None,
    )
