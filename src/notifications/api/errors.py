"""Exception handlers mapping domain errors to HTTP responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from notifications.errors import StorageUnavailableError
from protean.exceptions import ObjectNotFoundError, ValidationError

logger = structlog.get_logger(__name__)


async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": "validation_error", "details": exc.messages})


async def not_found_handler(request: Request, exc: ObjectNotFoundError):
    return JSONResponse(status_code=404, content={"error": "not_found", "message": str(exc)})


async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError):
    logger.warning("Request failed, storage unavailable", path=request.url.path, action=exc.action)
    return JSONResponse(
        status_code=503,
        content={"error": "storage_unavailable", "message": "Notifications are temporarily unavailable"},
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(ObjectNotFoundError, not_found_handler)
    app.add_exception_handler(StorageUnavailableError, storage_unavailable_handler)
