from typing import Callable, Dict, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

PRODUCTION_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    # JSON API only; documents are served from presigned object storage URLs
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none';",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), payment=()",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}

DEVELOPMENT_HEADERS = {
    "X-Frame-Options": "SAMEORIGIN",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # Swagger UI needs inline scripts and the CDN assets
    "Content-Security-Policy": "default-src 'self' 'unsafe-inline' 'unsafe-eval' https:; img-src 'self' data: https:;",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        environment: str = "production",
        custom_headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(app)
        defaults = (
            DEVELOPMENT_HEADERS if environment == "development" else PRODUCTION_HEADERS
        )
        self.headers = {**defaults, **(custom_headers or {})}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        for header_name, header_value in self.headers.items():
            response.headers.setdefault(header_name, header_value)

        return response
