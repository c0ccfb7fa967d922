"""Rate limiting for money-moving and externally reachable endpoints.

Uses slowapi. Storage defaults to in-process memory; point
``RATE_LIMIT_STORAGE_URI`` at Redis to share limits across instances.
Decorated endpoints must accept a ``request: Request`` argument.
"""

from functools import lru_cache
from typing import Callable

from fastapi import FastAPI, Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings


def _get_client_ip(request: Request) -> str:
    """
    Client IP, honouring the first hop of X-Forwarded-For when proxied.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def _get_user_or_ip(request: Request) -> str:
    """
    Rate limit by user ID if authenticated, otherwise by IP.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{_get_client_ip(request)}"


@lru_cache
def get_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=_get_user_or_ip,
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    JSON 429 with a Retry-After header.
    """
    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded: {exc.detail}",
            "error": "rate_limit_exceeded",
        },
        headers={"Retry-After": str(getattr(exc, "retry_after", 60))},
    )


def add_rate_limiting(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def checkout_limit(func: Callable) -> Callable:
    """Checkout creates orders and moves stock (10/minute per user)."""
    return limiter.limit("10/minute")(func)


def webhook_limit(func: Callable) -> Callable:
    """Chain webhook is unauthenticated before signature check (120/minute per IP)."""
    return limiter.limit("120/minute")(func)
