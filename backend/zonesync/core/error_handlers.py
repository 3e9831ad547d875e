"""
Exception handlers for the FastAPI application
"""

import logging
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .exceptions import (
    ConfigurationException,
    PublishError,
    StoreReadError,
    TransientPublishError,
    ValidationError,
    ZoneSyncException,
)

logger = logging.getLogger(__name__)


def _status_for(exc: ZoneSyncException) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, StoreReadError):
        return status.HTTP_404_NOT_FOUND if exc.not_found else status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, TransientPublishError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, PublishError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, ConfigurationException):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def zone_sync_exception_handler(request: Request, exc: ZoneSyncException) -> JSONResponse:
    """Handle zone sync exceptions raised outside of a publish job"""
    logger.error(f"Zone sync exception: {exc.message}", extra={
        "details": exc.details,
        "path": request.url.path,
        "method": request.method
    })

    error_response = exc.to_dict()
    error_response.update({
        "timestamp": datetime.utcnow().isoformat(),
        "path": request.url.path,
        "method": request.method
    })
    return JSONResponse(status_code=_status_for(exc), content=error_response)


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors from the state database"""
    logger.error(f"Database error: {exc}", extra={
        "path": request.url.path,
        "method": request.method
    })
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "message": "Database temporarily unavailable",
            "error_code": "DATABASE_ERROR",
            "details": {},
            "suggestions": ["Retry the request in a few moments"],
            "timestamp": datetime.utcnow().isoformat(),
            "path": request.url.path,
            "method": request.method
        }
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register all error handlers on the application"""
    app.add_exception_handler(ZoneSyncException, zone_sync_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
