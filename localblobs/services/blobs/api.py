"""
Blob Storage API Endpoints

Dispatches blob requests: resolves the path, authorizes the caller, fires the
``on_request`` callback and runs the operation, or answers with a signed URL
that performs it later.

Author: LocalBlobs Contributors
Date: 2025
"""

import logging
from typing import Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.requests import ClientDisconnect

from localblobs.auth.token import TokenGuard
from localblobs.core.logging_config import bind_operation, request_context

from .backend import FilesystemBackend
from .exceptions import MissingKeyError
from .models import (
    METADATA_HEADER,
    SIGNED_URL_ACCEPT,
    BlobAddress,
    Operation,
    RequestEvent,
    decode_metadata,
)
from .paths import SIGNATURE_PARAM, PathResolver


logger = logging.getLogger(__name__)

OnRequestCallback = Callable[[RequestEvent], None]
LogSink = Callable[[str], None]

SUPPORTED_METHODS = ["GET", "HEAD", "PUT", "DELETE"]

_TRUE_VALUES = ("true", "1")


def select_operation(method: str, address: BlobAddress, query: Mapping[str, str]) -> Optional[Operation]:
    """
    Map an HTTP method and address onto a blob operation.

    GET on a store lists it; ``?metadata=true`` or HEAD reads metadata.
    """
    method = method.upper()
    if method == "GET":
        if not address.key:
            return Operation.LIST
        if query.get("metadata", "").lower() in _TRUE_VALUES:
            return Operation.GET_METADATA
        return Operation.GET
    if method == "HEAD":
        return Operation.GET_METADATA
    if method == "PUT":
        return Operation.SET
    if method == "DELETE":
        return Operation.DELETE
    return None


def wants_signed_url(request: Request, query: Mapping[str, str]) -> bool:
    """True when the caller asked for a signed URL instead of the result."""
    accept = request.headers.get("accept", "").replace(" ", "").lower()
    if accept == SIGNED_URL_ACCEPT:
        return True
    return query.get("signed_url", "").lower() in _TRUE_VALUES


def raw_request_path(request: Request) -> str:
    """The request path as sent, still percent-encoded."""
    raw = request.scope.get("raw_path")
    if raw:
        return raw.decode("latin-1").split("?", 1)[0]
    return quote(request.scope.get("path", "/"))


def effective_url(request: Request) -> str:
    """Path plus query string, as reported to the ``on_request`` callback."""
    url = raw_request_path(request)
    query_string = request.scope.get("query_string", b"")
    if query_string:
        url += "?" + query_string.decode("latin-1")
    return url


class BlobsDispatcher:
    """
    Routes authorized requests to the filesystem backend.

    One instance serves every request; all state it holds is read-only.
    """

    def __init__(
        self,
        resolver: PathResolver,
        guard: TokenGuard,
        backend: FilesystemBackend,
        on_request: Optional[OnRequestCallback] = None,
        log_debug: Optional[LogSink] = None,
        base_url: Optional[Callable[[], Optional[str]]] = None,
    ):
        self._resolver = resolver
        self._guard = guard
        self._backend = backend
        self._on_request = on_request
        self._log_debug = log_debug or (lambda message: None)
        self._base_url = base_url or (lambda: None)
        self._handlers: Dict[Operation, Callable[[Request, BlobAddress, Mapping[str, str]], Awaitable[Response]]] = {
            Operation.GET: self._get,
            Operation.GET_METADATA: self._get_metadata,
            Operation.SET: self._set,
            Operation.DELETE: self._delete,
            Operation.LIST: self._list,
        }

    async def handle(self, request: Request) -> Response:
        """
        Handle one request.

        Raises:
            InvalidAddressError: Path does not resolve (400)
            AuthenticationError: Credentials missing or wrong (401/403)
            MissingKeyError: Operation needs a key (400)
            BlobNotFoundError: Blob absent on read (404)
            StorageIOError: Filesystem fault (500)
        """
        with request_context():
            url = effective_url(request)
            self._log_debug(f"--> {request.method} {url}")

            query = dict(request.query_params)
            resolved = self._resolver.resolve(raw_request_path(request), query)
            address = resolved.address

            operation = select_operation(request.method, address, query)
            if operation is None:
                return Response(status_code=status.HTTP_405_METHOD_NOT_ALLOWED)
            bind_operation(operation.value)

            self._guard.authorize(
                operation.value,
                address.site_id,
                address.store_name,
                address.key,
                authorization=request.headers.get("authorization"),
                signature=resolved.signature,
            )

            self._dispatch_event(operation, url)

            if operation.requires_key and not address.key:
                raise MissingKeyError(operation.value)

            if operation is not Operation.LIST and wants_signed_url(request, query):
                return self._signed_url_response(request, operation, address)

            response = await self._handlers[operation](request, address, query)
            self._log_debug(f"<-- {response.status_code} {operation.value} {url}")
            return response

    def _dispatch_event(self, operation: Operation, url: str) -> None:
        if self._on_request is None:
            return
        self._on_request(RequestEvent(type=operation, url=url))

    # ========== Signed URLs ==========

    def signed_url(self, base: str, operation: Operation, address: BlobAddress) -> str:
        """Build a URL that authorizes ``operation`` on ``address`` by itself."""
        params = {SIGNATURE_PARAM: self._guard.sign(
            operation.value, address.site_id, address.store_name, address.key
        )}
        if operation is Operation.GET_METADATA:
            params["metadata"] = "true"
        return f"{base.rstrip('/')}{PathResolver.direct_path(address)}?{urlencode(params)}"

    def _signed_url_response(self, request: Request, operation: Operation, address: BlobAddress) -> JSONResponse:
        base = self._base_url() or str(request.base_url)
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"url": self.signed_url(base, operation, address)},
        )

    # ========== Operations ==========

    async def _get(self, request: Request, address: BlobAddress, query: Mapping[str, str]) -> Response:
        reader = await self._backend.open_blob(address)
        headers = reader.record.to_headers()
        headers.pop("Content-Type", None)
        headers["Content-Length"] = str(reader.size)
        return StreamingResponse(
            reader.stream(),
            status_code=status.HTTP_200_OK,
            headers=headers,
            media_type=reader.record.content_type,
        )

    async def _get_metadata(self, request: Request, address: BlobAddress, query: Mapping[str, str]) -> Response:
        record = await self._backend.get_metadata(address)
        if request.method.upper() == "HEAD":
            return Response(status_code=status.HTTP_200_OK, headers=record.to_headers())
        return JSONResponse(status_code=status.HTTP_200_OK, content=record.model_dump())

    async def _set(self, request: Request, address: BlobAddress, query: Mapping[str, str]) -> Response:
        metadata = decode_metadata(request.headers.get(METADATA_HEADER))
        try:
            record = await self._backend.set_blob(
                address,
                request.stream(),
                content_type=request.headers.get("content-type"),
                metadata=metadata,
            )
        except ClientDisconnect:
            logger.info(f"Client disconnected while uploading '{address.key}'; upload discarded")
            return Response(status_code=status.HTTP_400_BAD_REQUEST)
        return Response(status_code=status.HTTP_200_OK, headers={"ETag": f'"{record.etag}"'})

    async def _delete(self, request: Request, address: BlobAddress, query: Mapping[str, str]) -> Response:
        await self._backend.delete_blob(address)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    async def _list(self, request: Request, address: BlobAddress, query: Mapping[str, str]) -> Response:
        result = await self._backend.list_blobs(
            address,
            prefix=query.get("prefix", ""),
            directories=query.get("directories", "").lower() in _TRUE_VALUES,
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=result.model_dump())


def create_router(dispatcher: BlobsDispatcher) -> APIRouter:
    """
    Create the FastAPI router for blob endpoints.

    A single catch-all route feeds the dispatcher, which parses the raw path
    itself so percent-encoded key segments survive intact.
    """
    router = APIRouter(tags=["blobs"])

    @router.api_route("/{full_path:path}", methods=SUPPORTED_METHODS, summary="Blob operation")
    async def blob_operation(request: Request, full_path: str) -> Response:
        return await dispatcher.handle(request)

    return router
