from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request, Response
from typing import Callable
import uuid
from voter_portal.utils.context import reset_request_id, set_request_id

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id, echoed back and stamped on every log line"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            request_id = str(uuid.UUID(request.headers.get(REQUEST_ID_HEADER)))
        except (ValueError, TypeError):
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id

        # Set in context variable for global access to logger
        token = set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
