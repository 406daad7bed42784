"""
Authentication exceptions for LocalBlobs.

Author: LocalBlobs Contributors
Date: 2025
"""


class AuthenticationError(Exception):
    """Base exception for authentication errors."""

    status_code = 403

    def __init__(self, message: str, error_code: str = "AuthenticationFailed"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class AuthenticationFailedError(AuthenticationError):
    """Raised when a bearer token or URL signature does not match (403 Forbidden)."""

    def __init__(self, message: str = "Server failed to authenticate the request"):
        super().__init__(message, "AuthenticationFailed")


class SignatureMismatchError(AuthenticationFailedError):
    """Raised when a signed URL's capability does not cover the request."""

    def __init__(self, message: str = "Signature mismatch"):
        super().__init__(message)


class MissingCredentialsError(AuthenticationError):
    """Raised when neither a bearer token nor a signature is present (401)."""

    status_code = 401

    def __init__(self, message: str = "Authorization header or signature is missing"):
        super().__init__(message, "MissingCredentials")


class InvalidAuthorizationHeaderError(AuthenticationError):
    """Raised when the Authorization header is not a Bearer credential (401)."""

    status_code = 401

    def __init__(self, message: str = "Invalid Authorization header format"):
        super().__init__(message, "InvalidAuthorizationHeader")
