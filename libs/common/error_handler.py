"""Exception handlers giving every service the same error body shape."""

from collections import defaultdict

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from libs.common.errors import MarketplaceError
from libs.common.logging import get_logger

logger = get_logger(__name__)


async def marketplace_error_handler(
    request: Request, exc: MarketplaceError
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s on %s: %s",
            exc.error_code,
            request.url.path,
            exc.message,
            extra={"extra_fields": exc.context},
        )
    else:
        logger.info(
            "%s on %s: %s",
            exc.error_code,
            request.url.path,
            exc.message,
            extra={"extra_fields": exc.context},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Collapse pydantic's error list into ``{field: [messages]}``."""
    errors: dict[str, list[str]] = defaultdict(list)
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        errors[field].append(error.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation failed",
            "error": "validation_error",
            "errors": dict(errors),
        },
    )


def add_exception_handlers(app: FastAPI) -> None:
    """Register the shared exception handlers on ``app``."""
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
