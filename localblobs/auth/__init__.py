"""
LocalBlobs Authentication Module.

Bearer token validation and signed-URL capabilities for the blob server.

Author: LocalBlobs Contributors
Date: 2025
"""

from localblobs.auth.exceptions import (
    AuthenticationError,
    AuthenticationFailedError,
    InvalidAuthorizationHeaderError,
    MissingCredentialsError,
    SignatureMismatchError,
)
from localblobs.auth.token import (
    TokenGuard,
    build_canonical_string,
    compute_signature,
    parse_authorization_header,
)

__all__ = [
    # Exceptions
    "AuthenticationError",
    "AuthenticationFailedError",
    "InvalidAuthorizationHeaderError",
    "MissingCredentialsError",
    "SignatureMismatchError",
    # Token auth
    "TokenGuard",
    "build_canonical_string",
    "compute_signature",
    "parse_authorization_header",
]
