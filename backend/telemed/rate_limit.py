"""Per-IP request throttling: a default limit on every route plus a tighter one on login."""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from .config import settings
from .errors import error_body
from .lockout import get_client_ip

limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[settings.API_RATE_LIMIT],
    storage_uri=settings.redis_url or "memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_body("RATE_LIMITED", "Too many requests. Please wait and try again."),
    )
