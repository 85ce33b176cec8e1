from .request_id_middleware import *
from .security_middleware import *
from .auth_middleware import *
from .rate_limit import *

__all__ = [
    "RequestIDMiddleware",
    "SecurityHeadersMiddleware",
    "AuthState",
    "JWTBearer",
    "get_current_user",
    "require_role",
    "require_volunteer",
    "require_supervisor",
    "require_admin",
    "RateLimiter",
    "RateLimitHeadersMiddleware",
    "general_rate_limit",
    "form_rate_limit",
    "auth_rate_limit",
    "upload_rate_limit",
]
