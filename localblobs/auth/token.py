"""
Bearer token and signed-URL authentication for the blob server.

The configured secret is never kept in memory after construction: the guard
stores ``HMAC-SHA256(instance_key, secret)`` where ``instance_key`` is 32 random
bytes generated per server instance. Without a secret the hash covers random
filler, so signed URLs still work and anonymous access is granted.

Signed URLs carry a capability: ``HMAC-SHA256(secret_hash, canonical_string)``
where the canonical string binds one operation to one blob address, so a URL
minted for ``get`` cannot be replayed as ``delete`` or against another key.

Author: LocalBlobs Contributors
Date: 2025
"""

import hashlib
import hmac
import logging
import secrets
from typing import Optional
from urllib.parse import quote

from localblobs.auth.exceptions import (
    AuthenticationFailedError,
    InvalidAuthorizationHeaderError,
    MissingCredentialsError,
    SignatureMismatchError,
)

logger = logging.getLogger(__name__)

BEARER_SCHEME = "bearer"
INSTANCE_KEY_BYTES = 32


class TokenGuard:
    """
    Validates bearer credentials and signed-URL capabilities.

    Read-only after construction, so it is safe to share between concurrent
    requests.
    """

    def __init__(self, token: Optional[str] = None):
        """
        Initialize the guard.

        Args:
            token: Shared secret. None enables anonymous mode.
        """
        self._instance_key = secrets.token_bytes(INSTANCE_KEY_BYTES)
        self._anonymous = token is None
        if token is None:
            message = secrets.token_bytes(INSTANCE_KEY_BYTES)
        else:
            message = token.encode("utf-8")
        self._token_hash = compute_signature(message, self._instance_key)

    @property
    def anonymous(self) -> bool:
        """True when no secret was configured."""
        return self._anonymous

    @property
    def token_hash(self) -> str:
        """Hex digest standing in for the configured secret."""
        return self._token_hash

    def verify_token(self, token: str) -> bool:
        """Check a presented secret against the stored hash in constant time."""
        if self._anonymous:
            return False
        presented = compute_signature(token.encode("utf-8"), self._instance_key)
        return hmac.compare_digest(presented, self._token_hash)

    def sign(self, operation: str, site_id: str, store_name: str, key: str) -> str:
        """
        Mint a capability for one operation on one blob address.

        Returns:
            Hex-encoded capability for the ``signature`` query parameter
        """
        canonical = build_canonical_string(operation, site_id, store_name, key)
        return compute_signature(canonical.encode("utf-8"), bytes.fromhex(self._token_hash))

    def verify_signature(
        self,
        signature: str,
        operation: str,
        site_id: str,
        store_name: str,
        key: str,
    ) -> bool:
        """Check that ``signature`` authorizes exactly this operation and address."""
        expected = self.sign(operation, site_id, store_name, key)
        return hmac.compare_digest(signature.lower().encode("utf-8"), expected.encode("ascii"))

    def authorize(
        self,
        operation: str,
        site_id: str,
        store_name: str,
        key: str,
        authorization: Optional[str] = None,
        signature: Optional[str] = None,
    ) -> None:
        """
        Authorize a request or raise.

        A request passes in anonymous mode, with a matching bearer token, or
        with a signature covering its operation and address.

        Raises:
            MissingCredentialsError: Neither credential is present
            InvalidAuthorizationHeaderError: Authorization is not a Bearer credential
            AuthenticationFailedError: Bearer token does not match
            SignatureMismatchError: Signature does not cover the request
        """
        if self._anonymous:
            return

        if authorization:
            try:
                token = parse_authorization_header(authorization)
            except InvalidAuthorizationHeaderError:
                if not signature:
                    raise
                token = None
            if token is not None and self.verify_token(token):
                return
            if not signature:
                logger.warning(f"Rejected bearer token for {operation} on {site_id}/{store_name}")
                raise AuthenticationFailedError()

        if signature:
            if self.verify_signature(signature, operation, site_id, store_name, key):
                return
            logger.warning(f"Rejected signature for {operation} on {site_id}/{store_name}")
            raise SignatureMismatchError(
                "Server failed to authenticate the request. "
                "Signature does not cover this operation."
            )

        raise MissingCredentialsError()


def parse_authorization_header(auth_header: str) -> str:
    """
    Extract the token from a Bearer Authorization header.

    Expected format: "Bearer <token>"

    Raises:
        InvalidAuthorizationHeaderError: If header is malformed
    """
    parts = auth_header.strip().split(maxsplit=1)

    if len(parts) != 2 or parts[0].lower() != BEARER_SCHEME:
        raise InvalidAuthorizationHeaderError(
            "Authorization header must be in format: Bearer <token>"
        )

    return parts[1].strip()


def build_canonical_string(operation: str, site_id: str, store_name: str, key: str) -> str:
    """
    Build the string a capability signs.

    Format:
        operation\\n
        quoted(site_id)\\n
        quoted(store_name)\\n
        quoted(key)

    Fields are percent-encoded so none can contain the separator.
    """
    fields = [operation] + [quote(part, safe="") for part in (site_id, store_name, key)]
    return "\n".join(fields)


def compute_signature(message: bytes, key: bytes) -> str:
    """Compute a hex HMAC-SHA256 of ``message`` under ``key``."""
    return hmac.new(key, message, hashlib.sha256).hexdigest()
