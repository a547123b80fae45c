import logging
import traceback
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError
from hostel.utils.exceptions import AppException, ErrorCode

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str, code: str,
                    details: list | None = None, field: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "error": {"code": code, "details": details, "field": field},
        }
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Typed engine rejections: validation, not found, conflict, capacity, state, refund."""
    if exc.status_code == status.HTTP_409_CONFLICT:
        # Capacity races and duplicate requests are worth seeing in the logs
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    detail = exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": detail.get("message", "An error occurred"),
            "error": detail.get("error", {"code": ErrorCode.INTERNAL_SERVER_ERROR}),
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Request bodies and query strings that fail pydantic validation.
    Reported in the same envelope as ValidationException, with one entry per field.
    """
    details = []
    for error in exc.errors():
        # loc is a tuple like ("body", "roomNumber") or ("query", "limit")
        loc = error.get("loc", [])
        field = ".".join(str(l) for l in loc if l != "body") if loc else "unknown"
        details.append({"field": field, "message": error.get("msg", "Invalid value")})

    return _error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error. Please check your input.",
        ErrorCode.VALIDATION_ERROR,
        details=details,
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """
    Constraint violations that escaped a service transaction.
    Services normally turn these into ConflictException inside atomic().
    """
    logger.warning(f"IntegrityError on {request.method} {request.url}: {exc.orig}")
    return _error_response(
        status.HTTP_409_CONFLICT,
        "Operation conflicts with an existing record.",
        ErrorCode.CONFLICT,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.method} {request.url}\n"
        f"{traceback.format_exc()}"
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
        ErrorCode.INTERNAL_SERVER_ERROR,
    )
