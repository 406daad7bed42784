"""
FastAPI Exception Handlers for the Blob Service

Maps blob service and authentication exceptions to JSON error responses.

Author: LocalBlobs Contributors
Date: 2025
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from localblobs.auth.exceptions import AuthenticationError

from .exceptions import (
    BlobNotFoundError,
    BlobServiceError,
    InvalidAddressError,
    InvalidMetadataError,
    StorageIOError,
)


logger = logging.getLogger("localblobs.services.blobs.api.errors")


# Exception to HTTP status code mapping
EXCEPTION_STATUS_CODES = {
    InvalidAddressError: status.HTTP_400_BAD_REQUEST,
    InvalidMetadataError: status.HTTP_400_BAD_REQUEST,
    BlobNotFoundError: status.HTTP_404_NOT_FOUND,
    StorageIOError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_status_code_for_exception(exc: Exception) -> int:
    """
    Get HTTP status code for exception type.

    Args:
        exc: Exception instance

    Returns:
        HTTP status code
    """
    exc_type = type(exc)
    if exc_type in EXCEPTION_STATUS_CODES:
        return EXCEPTION_STATUS_CODES[exc_type]

    for exception_type, status_code in EXCEPTION_STATUS_CODES.items():
        if isinstance(exc, exception_type):
            return status_code

    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def blob_service_exception_handler(request: Request, exc: BlobServiceError) -> JSONResponse:
    """Handle BlobServiceError exceptions."""
    status_code = get_status_code_for_exception(exc)

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    else:
        logger.debug(f"{request.method} {request.url.path} -> {status_code} {exc.error_code}")

    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def authentication_exception_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    """Handle authentication failures before any dispatch happened."""
    logger.info(f"{request.method} {request.url.path} rejected: {exc.error_code}")

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.error_code, "message": exc.message}},
        headers=headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "InternalError", "message": "An unexpected error occurred"}},
    )


def register_exception_handlers(app) -> None:
    """
    Register exception handlers with a FastAPI app.

    Args:
        app: FastAPI app instance
    """
    app.add_exception_handler(BlobServiceError, blob_service_exception_handler)
    app.add_exception_handler(AuthenticationError, authentication_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
