"""
LocalBlobs server.

``BlobsServer`` wires the path resolver, token guard, filesystem backend and
FastAPI application together and owns the listener lifecycle.

Example:
    server = BlobsServer(directory="/tmp/blobs", token="secret")
    address = server.start()
    ...
    server.stop()
"""

from pathlib import Path
from typing import Optional, Union

from fastapi import FastAPI

from localblobs import __version__
from localblobs.auth.token import TokenGuard
from localblobs.core.config_manager import BlobsConfig
from localblobs.core.lifecycle import LifecycleManager, ServerAddress
from localblobs.core.logging_config import get_logger
from localblobs.services.blobs.api import BlobsDispatcher, LogSink, OnRequestCallback, create_router
from localblobs.services.blobs.backend import FilesystemBackend
from localblobs.services.blobs.error_handlers import register_exception_handlers
from localblobs.services.blobs.paths import PathResolver

logger = get_logger(__name__)


def create_app(dispatcher: BlobsDispatcher) -> FastAPI:
    """Create the FastAPI application serving blob requests."""
    # Documentation routes would shadow sites named "docs" or "redoc"
    app = FastAPI(
        title="LocalBlobs",
        description="Local blob storage emulator",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.include_router(create_router(dispatcher))
    register_exception_handlers(app)
    return app


class BlobsServer:
    """
    Local blob storage server.

    Configuration is fixed at construction. Only the listener is mutable:
    set by ``start`` and cleared by ``stop``.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        port: Optional[int] = None,
        token: Optional[str] = None,
        debug: bool = False,
        on_request: Optional[OnRequestCallback] = None,
        logger: Optional[LogSink] = None,
        host: str = "127.0.0.1",
    ):
        """
        Args:
            directory: Storage root, created on start
            port: Listen port; None or 0 picks an ephemeral port
            token: Shared secret; None allows anonymous access
            debug: Send per-request messages to ``logger``
            on_request: Called once per dispatched operation
            logger: Sink for debug messages; defaults to the module logger
            host: Interface to listen on
        """
        self._directory = Path(directory)
        self._debug = debug
        self._log_sink: LogSink = logger or _default_sink
        self._base_url: Optional[str] = None

        # Only the keyed hash of the token outlives this call
        self._guard = TokenGuard(token)
        self._resolver = PathResolver(self._directory)
        self._backend = FilesystemBackend(self._resolver)
        self._dispatcher = BlobsDispatcher(
            resolver=self._resolver,
            guard=self._guard,
            backend=self._backend,
            on_request=on_request,
            log_debug=self.log_debug,
            base_url=lambda: self._base_url,
        )
        self._app = create_app(self._dispatcher)
        self._lifecycle = LifecycleManager(self._app, host=host, port=port or 0)

    @classmethod
    def from_config(
        cls,
        config: BlobsConfig,
        on_request: Optional[OnRequestCallback] = None,
        logger: Optional[LogSink] = None,
    ) -> "BlobsServer":
        """Build a server from a loaded configuration."""
        return cls(
            directory=config.directory,
            port=config.port,
            token=config.token,
            debug=config.debug,
            on_request=on_request,
            logger=logger,
            host=config.host,
        )

    @property
    def app(self) -> FastAPI:
        return self._app

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def token_hash(self) -> str:
        return self._guard.token_hash

    @property
    def url(self) -> Optional[str]:
        """Base URL while running, used in signed URLs."""
        return self._base_url

    @property
    def dispatcher(self) -> BlobsDispatcher:
        return self._dispatcher

    def log_debug(self, message: str) -> None:
        if not self._debug:
            return
        self._log_sink(message)

    def start(self) -> ServerAddress:
        """
        Create the storage root and start listening.

        Returns:
            Bound address, family ("IPv4", "IPv6" or "unknown") and port

        Raises:
            OSError: Storage root cannot be created or the port cannot be bound
            LifecycleError: Listener is not an IP endpoint or server already started
        """
        self._directory.mkdir(parents=True, exist_ok=True)
        address = self._lifecycle.start()
        self._base_url = f"http://localhost:{address.port}"
        logger.info(f"Serving blobs from {self._directory} at {self._base_url}")
        return address

    def stop(self) -> None:
        """Stop listening; no-op if never started."""
        self._lifecycle.stop()
        self._base_url = None

    def wait(self) -> None:
        """Block until the server stops."""
        self._lifecycle.wait()

    def __enter__(self) -> "BlobsServer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def _default_sink(message: str) -> None:
    logger.info(message)
