"""
Blob Service Models

Addresses, operations, metadata records and listing models for the blob
server.

Author: LocalBlobs Contributors
Date: 2025
"""

import base64
import binascii
import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .exceptions import InvalidMetadataError


LEGACY_DEFAULT_STORE = "production"
REGION_PREFIX = "region:"

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Header carrying user metadata on set and get, as "b64;<base64 JSON>".
METADATA_HEADER = "x-amz-meta-user"
BASE64_PREFIX = "b64;"

SIGNED_URL_ACCEPT = "application/json;type=signed-url"


class Operation(str, Enum):
    """Blob operations dispatched by the server."""
    DELETE = "delete"
    GET = "get"
    GET_METADATA = "getMetadata"
    LIST = "list"
    SET = "set"

    @property
    def requires_key(self) -> bool:
        return self is not Operation.LIST


class UrlScheme(str, Enum):
    """Recognized request path shapes."""
    CURRENT = "current"
    LEGACY = "legacy"
    DIRECT = "direct"


@dataclass(frozen=True)
class BlobAddress:
    """
    Logical identity of a stored object.

    ``region`` is a routing hint only; two addresses differing just in region
    name the same object on disk.
    """
    site_id: str
    store_name: str
    key: str = ""
    region: Optional[str] = None

    @property
    def key_segments(self) -> List[str]:
        return self.key.split("/") if self.key else []

    def identity(self) -> tuple:
        """Storage identity, ignoring the region."""
        return (self.site_id, self.store_name, self.key)


@dataclass(frozen=True)
class LocalPaths:
    """Filesystem projection of a blob address."""
    store_path: Path
    content_path: Optional[Path] = None
    metadata_path: Optional[Path] = None


@dataclass(frozen=True)
class ResolvedRequest:
    """Result of parsing a request path and query."""
    scheme: UrlScheme
    address: BlobAddress
    signature: Optional[str] = None


@dataclass(frozen=True)
class RequestEvent:
    """Notification passed to the ``on_request`` callback."""
    type: Operation
    url: str


class BlobRecord(BaseModel):
    """Metadata sidecar stored next to a blob's content."""

    content_type: str = DEFAULT_CONTENT_TYPE
    etag: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_headers(self) -> Dict[str, str]:
        """Convert the record to response headers."""
        headers = {"Content-Type": self.content_type}
        if self.etag:
            headers["ETag"] = f'"{self.etag}"'
        encoded = encode_metadata(self.metadata)
        if encoded:
            headers[METADATA_HEADER] = encoded
        return headers


class BlobItem(BaseModel):
    """One entry of a list response."""

    key: str
    etag: str = ""
    size: int = 0
    last_modified: str


class ListResult(BaseModel):
    """List response body."""

    blobs: List[BlobItem] = Field(default_factory=list)
    directories: List[str] = Field(default_factory=list)


def encode_metadata(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Encode user metadata for the metadata header.

    Returns:
        "b64;<base64 JSON>" or None when there is no metadata
    """
    if not metadata:
        return None
    payload = json.dumps(metadata, separators=(",", ":")).encode("utf-8")
    return BASE64_PREFIX + base64.b64encode(payload).decode("ascii")


def decode_metadata(header: Optional[str]) -> Dict[str, Any]:
    """
    Decode the metadata header sent with a set request.

    Accepts the "b64;" form and plain JSON.

    Raises:
        InvalidMetadataError: If the header is not a JSON object
    """
    if not header:
        return {}

    raw = header.strip()
    if raw.startswith(BASE64_PREFIX):
        try:
            raw = base64.b64decode(raw[len(BASE64_PREFIX):], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise InvalidMetadataError(f"Metadata is not valid base64: {e}") from e

    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidMetadataError(f"Metadata is not valid JSON: {e}") from e

    if not isinstance(value, dict):
        raise InvalidMetadataError("Metadata must be a JSON object")

    return value
