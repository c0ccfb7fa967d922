"""Request-context middleware for the marketplace services.

Every request gets an ``X-Request-ID`` (propagated from the caller when
present, generated otherwise). The ID is bound to the logging context so
order and ledger log lines can be correlated across services, and it is
echoed back on the response.

Usage:
    from libs.common.middleware import add_observability_middleware

    app = FastAPI()
    add_observability_middleware(app, service_name="orders")
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

_QUIET_PATHS = {"/health"}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the request ID and logs each request's outcome and duration."""

    def __init__(self, app: ASGIApp, service_name: str = "marketplace"):
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get("X-Request-ID"),
            path=request.url.path,
            method=request.method,
        )
        start_time = time.perf_counter()
        quiet = request.url.path in _QUIET_PATHS

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Request failed with unhandled exception",
                extra={
                    "extra_fields": {
                        "service": self.service_name,
                        "duration_ms": round(
                            (time.perf_counter() - start_time) * 1000, 2
                        ),
                    }
                },
            )
            raise
        else:
            if not quiet:
                duration_ms = (time.perf_counter() - start_time) * 1000
                log = logger.warning if response.status_code >= 400 else logger.info
                log(
                    "%s %s -> %d",
                    request.method,
                    request.url.path,
                    response.status_code,
                    extra={
                        "extra_fields": {
                            "service": self.service_name,
                            "status_code": response.status_code,
                            "duration_ms": round(duration_ms, 2),
                        }
                    },
                )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_request_context()


def add_observability_middleware(app: FastAPI, service_name: str) -> None:
    """
    Configure logging and attach the request-context middleware to ``app``.
    """
    configure_logging()
    app.add_middleware(RequestContextMiddleware, service_name=service_name)
