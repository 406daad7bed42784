"""
Blob Service Exception Hierarchy

Error types raised by the path resolver and the filesystem backend, each
carrying an error code for API responses.

Author: LocalBlobs Contributors
Date: 2025
"""

from typing import Any, Dict, Optional


class BlobServiceError(Exception):
    """
    Base exception for all blob service errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., 'BlobNotFound')
        details: Additional context
    """

    error_code: str = "InternalError"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for API responses."""
        error: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error}


# ========== Client Errors ==========

class InvalidAddressError(BlobServiceError):
    """Raised when a request path does not resolve to a blob address."""
    error_code = "InvalidUri"


class MissingKeyError(InvalidAddressError):
    """Raised when an operation that needs a key is addressed at a store."""
    error_code = "MissingKey"

    def __init__(self, operation: str):
        super().__init__(
            f"Operation '{operation}' requires a blob key",
            details={"operation": operation},
        )


class InvalidMetadataError(BlobServiceError):
    """Raised when the metadata header of a set request cannot be decoded."""
    error_code = "InvalidMetadata"


# ========== Not Found ==========

class BlobNotFoundError(BlobServiceError):
    """Raised when a blob is not found."""
    error_code = "BlobNotFound"

    def __init__(self, key: str):
        super().__init__(f"Blob '{key}' not found", details={"key": key})


# ========== Server Faults ==========

class StorageIOError(BlobServiceError):
    """Raised when a filesystem operation fails for a reason other than absence."""
    error_code = "InternalError"
