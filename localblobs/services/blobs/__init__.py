"""
LocalBlobs Blob Service

Emulates a cloud blob-storage API on top of a local directory tree, with
current and legacy URL schemes, bearer-token auth and signed URLs.
"""

from .api import BlobsDispatcher, create_router
from .backend import FilesystemBackend
from .error_handlers import register_exception_handlers
from .models import BlobAddress, BlobRecord, LocalPaths, Operation, RequestEvent
from .paths import PathResolver

__all__ = [
    "BlobAddress",
    "BlobRecord",
    "BlobsDispatcher",
    "FilesystemBackend",
    "LocalPaths",
    "Operation",
    "PathResolver",
    "RequestEvent",
    "create_router",
    "register_exception_handlers",
]
