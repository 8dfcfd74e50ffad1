"""Exception handlers mapping delegation and database errors to JSON responses."""

import logging
from typing import Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.config import settings
from ..errors import NotFoundError, TaskValidationError


logger = logging.getLogger(__name__)


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """
    Handle request body validation errors with per-field details.

    Returns:
        422 JSON response
    """
    errors = []

    for error in exc.errors():
        field_path = ".".join(str(x) for x in error["loc"] if x != "body")
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(f"Validation error on {request.url.path}: {errors}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "The request data failed validation",
            "details": errors
        }
    )


async def task_validation_handler(request: Request, exc: TaskValidationError) -> JSONResponse:
    logger.warning(f"Rejected task on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": str(exc), "error_type": "validation"},
    )


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": f"{exc.kind.capitalize()} not found", "id": exc.identifier},
    )


async def database_exception_handler(
    request: Request,
    exc: SQLAlchemyError
) -> JSONResponse:
    """
    Handle database errors.

    Returns:
        409 for constraint violations, 500 otherwise
    """
    logger.error(f"Database error on {request.url.path}: {exc}", exc_info=True)

    if isinstance(exc, IntegrityError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "error": "Database Constraint Violation",
                "message": "The operation violates a database constraint (e.g., duplicate entry)",
                "details": str(exc.orig) if hasattr(exc, 'orig') else str(exc)
            }
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Database Error",
            "message": "An error occurred while accessing the database",
            "details": str(exc) if settings.DEBUG else None
        }
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error(
        f"Unhandled exception on {request.url.path}: {exc}",
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "details": str(exc) if settings.DEBUG else "Please contact support if this persists"
        }
    )
