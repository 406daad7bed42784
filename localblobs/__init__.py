"""
LocalBlobs: Local Blob Storage Emulator

Serves a cloud blob-storage API from a local directory for offline
development and testing.
"""

__version__ = "0.1.0"

from .server import BlobsServer

__all__ = ["BlobsServer", "__version__"]
