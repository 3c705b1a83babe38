"""Domain errors for the purchase workflow and their HTTP mapping."""
import logging
from typing import List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class PurchaseError(Exception):
    """Base class; subclasses pin the status code and default message."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "purchase_error"
    detail = "Purchase error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.detail
        super().__init__(self.detail)


class ValidationError(PurchaseError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    detail = "Invalid request"


class NotFoundError(PurchaseError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    detail = "Resource not found"


class ForbiddenError(PurchaseError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    detail = "Forbidden"


class ConflictError(PurchaseError):
    """A conditional status update found the row in another state."""
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    detail = "Resource was modified by another request"

    def __init__(self, detail: Optional[str] = None, current=None):
        super().__init__(detail)
        self.current = current

    @property
    def current_status(self):
        return getattr(self.current, "status", None)


class DuplicateError(PurchaseError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate"
    detail = "Resource already exists"


class ConfigurationError(PurchaseError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "configuration_error"
    detail = "Service is not configured"


class DependencyError(PurchaseError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "dependency_error"
    detail = "A downstream service failed"


class FulfillmentError(DependencyError):
    code = "fulfillment_incomplete"
    detail = "Library access could not be granted"

    def __init__(self, detail: Optional[str] = None, failed_book_ids: Optional[List[int]] = None, issue_id=None):
        super().__init__(detail)
        self.failed_book_ids = failed_book_ids or []
        self.issue_id = issue_id


async def purchase_error_handler(request: Request, exc: PurchaseError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url}: {exc.detail}")

    content = {"detail": exc.detail, "code": exc.code}
    if isinstance(exc, FulfillmentError):
        content["failed_book_ids"] = exc.failed_book_ids
        content["issue_id"] = exc.issue_id

    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        errors.append({
            "field": " -> ".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning(f"Validation error on {request.url}: {errors}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": errors
        }
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.url}: {str(exc)}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Database error occurred",
            "code": "database_error"
        }
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(PurchaseError, purchase_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
