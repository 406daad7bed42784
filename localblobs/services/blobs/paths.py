"""
Blob Path Resolver

Parses request paths into blob addresses and projects addresses onto the
storage directory.

Three path shapes are recognized, tried in order:

- current: ``[/api]/v1/blobs/[region:<r>/]<site_id>/<store_name>[/<key...>]``
- legacy:  ``[/api]/v1/sites/[region:<r>/]<site_id>[/blobs][/<key...>]``
  (store is always ``production``)
- direct:  ``/[region:<r>/]<site_id>/<store_name>[/<key...>]``, the target
  of signed URLs

On disk every site, store and key segment is percent-encoded with ``.`` and
``~`` escaped as well, so encoded names never contain a dot. Content lives in
``<segment>.blob`` and metadata in ``<segment>.meta.json``; a content file can
therefore never clash with the directory of a longer key, and no encoded name
can be ``..``.

Author: LocalBlobs Contributors
Date: 2025
"""

import os
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote, unquote

from .exceptions import InvalidAddressError
from .models import (
    LEGACY_DEFAULT_STORE,
    REGION_PREFIX,
    BlobAddress,
    LocalPaths,
    ResolvedRequest,
    UrlScheme,
)


CONTENT_SUFFIX = ".blob"
METADATA_SUFFIX = ".meta.json"

API_PREFIXES: Tuple[Tuple[str, ...], ...] = (("api", "v1"), ("v1",))
CURRENT_MARKER = "blobs"
LEGACY_MARKER = "sites"
LEGACY_KEY_MARKER = "blobs"

SIGNATURE_PARAM = "signature"

_FORBIDDEN_SEGMENTS = frozenset(["", ".", ".."])


def encode_segment(segment: str) -> str:
    """Encode one logical segment as a filesystem name."""
    return quote(segment, safe="").replace(".", "%2E").replace("~", "%7E")


def decode_segment(name: str) -> str:
    """Reverse encode_segment."""
    return unquote(name, errors="strict")


def _decode_url_segment(raw: str) -> str:
    try:
        return unquote(raw, errors="strict")
    except UnicodeDecodeError as e:
        raise InvalidAddressError(f"Path segment '{raw}' is not valid UTF-8") from e


def _check_name(value: str, what: str) -> str:
    if value in _FORBIDDEN_SEGMENTS:
        raise InvalidAddressError(f"Invalid {what}: '{value}'")
    return value


def _check_key(segments: Sequence[str]) -> str:
    """Join decoded key segments and reject empty or relative components."""
    key = "/".join(segments)
    if not key:
        return key
    for part in key.split("/"):
        if part in _FORBIDDEN_SEGMENTS:
            raise InvalidAddressError(
                f"Invalid key '{key}': empty, '.' and '..' segments are not allowed"
            )
    return key


class PathResolver:
    """
    Maps request URLs to blob addresses and addresses to local paths.

    Stateless apart from the storage root, so one instance serves all
    requests.
    """

    def __init__(self, directory: Union[str, Path]):
        self._root = Path(os.path.abspath(directory))
        self._rules: List[Callable[[List[str], Mapping[str, str]], Optional[ResolvedRequest]]] = [
            self._match_current,
            self._match_legacy,
            self._match_direct,
        ]

    @property
    def root(self) -> Path:
        return self._root

    # ========== URL -> address ==========

    def resolve(self, raw_path: str, query: Optional[Mapping[str, str]] = None) -> ResolvedRequest:
        """
        Resolve a raw (percent-encoded) request path.

        Args:
            raw_path: Request path without query string
            query: Decoded query parameters

        Returns:
            ResolvedRequest with the canonical address

        Raises:
            InvalidAddressError: If the path matches no shape or holds invalid names
        """
        query = query or {}
        if not raw_path.startswith("/"):
            raise InvalidAddressError(f"Request path must be absolute: '{raw_path}'")

        parts = raw_path.split("/")[1:]
        # A single trailing slash addresses the store itself
        if len(parts) > 1 and parts[-1] == "":
            parts = parts[:-1]

        for rule in self._rules:
            resolved = rule(parts, query)
            if resolved is not None:
                return resolved

        raise InvalidAddressError(f"Path '{raw_path}' does not address a blob or store")

    @staticmethod
    def _strip_api_prefix(parts: List[str]) -> Optional[List[str]]:
        for prefix in API_PREFIXES:
            if tuple(parts[:len(prefix)]) == prefix:
                return parts[len(prefix):]
        return None

    @staticmethod
    def _take_region(parts: List[str]) -> Tuple[Optional[str], List[str]]:
        if parts:
            first = _decode_url_segment(parts[0])
            if first.startswith(REGION_PREFIX):
                region = first[len(REGION_PREFIX):]
                if not region:
                    raise InvalidAddressError("Empty region segment")
                return region, parts[1:]
        return None, parts

    def _build(
        self,
        scheme: UrlScheme,
        region: Optional[str],
        raw_site: str,
        store_name: str,
        raw_key: List[str],
        query: Mapping[str, str],
    ) -> ResolvedRequest:
        site_id = _check_name(_decode_url_segment(raw_site), "site id")
        store_name = _check_name(store_name, "store name")
        key = _check_key([_decode_url_segment(s) for s in raw_key])
        address = BlobAddress(site_id=site_id, store_name=store_name, key=key, region=region)
        return ResolvedRequest(
            scheme=scheme,
            address=address,
            signature=query.get(SIGNATURE_PARAM) or None,
        )

    def _match_current(self, parts: List[str], query: Mapping[str, str]) -> Optional[ResolvedRequest]:
        rest = self._strip_api_prefix(parts)
        if not rest or rest[0] != CURRENT_MARKER:
            return None
        region, body = self._take_region(rest[1:])
        if len(body) < 2:
            raise InvalidAddressError("Expected /blobs/<site_id>/<store_name>[/<key>]")
        store_name = _decode_url_segment(body[1])
        return self._build(UrlScheme.CURRENT, region, body[0], store_name, body[2:], query)

    def _match_legacy(self, parts: List[str], query: Mapping[str, str]) -> Optional[ResolvedRequest]:
        rest = self._strip_api_prefix(parts)
        if not rest or rest[0] != LEGACY_MARKER:
            return None
        region, body = self._take_region(rest[1:])
        if not body:
            raise InvalidAddressError("Expected /sites/<site_id>[/blobs][/<key>]")
        key_parts = body[1:]
        if key_parts and key_parts[0] == LEGACY_KEY_MARKER:
            key_parts = key_parts[1:]
        store_name = LEGACY_DEFAULT_STORE
        return self._build(UrlScheme.LEGACY, region, body[0], store_name, key_parts, query)

    def _match_direct(self, parts: List[str], query: Mapping[str, str]) -> Optional[ResolvedRequest]:
        region, body = self._take_region(parts)
        if len(body) < 2:
            return None
        store_name = _decode_url_segment(body[1])
        return self._build(UrlScheme.DIRECT, region, body[0], store_name, body[2:], query)

    # ========== address -> URL ==========

    @staticmethod
    def direct_path(address: BlobAddress) -> str:
        """Build the percent-encoded direct path for an address."""
        parts = []
        if address.region:
            parts.append(REGION_PREFIX + quote(address.region, safe=""))
        parts.append(quote(address.site_id, safe=""))
        parts.append(quote(address.store_name, safe=""))
        parts.extend(quote(segment, safe="") for segment in address.key_segments)
        return "/" + "/".join(parts)

    # ========== address -> filesystem ==========

    def local_paths(self, address: BlobAddress) -> LocalPaths:
        """
        Project an address onto the storage root.

        Raises:
            InvalidAddressError: If the projection would leave the storage root
        """
        store_path = self._root / encode_segment(address.site_id) / encode_segment(address.store_name)
        if not address.key:
            return LocalPaths(store_path=self._contained(store_path))

        encoded = [encode_segment(segment) for segment in address.key_segments]
        parent = store_path.joinpath(*encoded[:-1])
        return LocalPaths(
            store_path=self._contained(store_path),
            content_path=self._contained(parent / (encoded[-1] + CONTENT_SUFFIX)),
            metadata_path=self._contained(parent / (encoded[-1] + METADATA_SUFFIX)),
        )

    def _contained(self, path: Path) -> Path:
        normalized = os.path.normpath(path)
        if os.path.commonpath([normalized, str(self._root)]) != str(self._root) or normalized == str(self._root):
            raise InvalidAddressError("Address resolves outside the storage root")
        return path

    @staticmethod
    def key_from_content_path(store_path: Path, content_path: Path) -> str:
        """Reconstruct the logical key of a content file below ``store_path``."""
        relative = content_path.relative_to(store_path).parts
        leaf = relative[-1][:-len(CONTENT_SUFFIX)]
        return "/".join(decode_segment(name) for name in (*relative[:-1], leaf))
