"""
LocalBlobs Lifecycle Manager.

Binds the listening socket, runs uvicorn on it in a background thread and
shuts it down gracefully, letting in-flight requests finish.
"""

import ipaddress
import socket
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import uvicorn

from .logging_config import get_logger

logger = get_logger(__name__)


class LifecycleState(str, Enum):
    """Server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


class LifecycleError(RuntimeError):
    """Raised when the server cannot be started; not retryable."""


@dataclass(frozen=True)
class ServerAddress:
    """Where a started server is listening."""
    address: str
    family: str
    port: int


def address_family(address: str) -> str:
    """Classify a bound address as "IPv4", "IPv6" or "unknown"."""
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return "unknown"
    return "IPv4" if ip.version == 4 else "IPv6"


def bind_socket(host: str, port: int) -> socket.socket:
    """
    Bind a listening TCP socket.

    Args:
        host: Interface name or address
        port: Port number, 0 for an ephemeral port

    Raises:
        OSError: If the address cannot be resolved or bound
    """
    family, _, _, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)[0]
    return socket.create_server(sockaddr[:2], family=family)


def describe_socket(sock: socket.socket) -> ServerAddress:
    """
    Report the address a socket is bound to.

    Raises:
        LifecycleError: If the socket is not bound to an IP endpoint
    """
    sockname = sock.getsockname()
    if not isinstance(sockname, tuple) or len(sockname) < 2:
        raise LifecycleError("Server cannot be started on a pipe or Unix socket")
    address, port = sockname[0], sockname[1]
    return ServerAddress(address=address, family=address_family(address), port=port)


class LifecycleManager:
    """
    Start and stop one uvicorn server for an ASGI app.

    ``start`` returns once the server accepts connections; ``stop`` is a no-op
    when the server was never started.
    """

    def __init__(
        self,
        app,
        host: str = "127.0.0.1",
        port: int = 0,
        startup_timeout: float = 10.0,
        shutdown_timeout: float = 30.0,
    ):
        self._app = app
        self._host = host
        self._port = port
        self._startup_timeout = startup_timeout
        self._shutdown_timeout = shutdown_timeout
        self._state = LifecycleState.STOPPED
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None
        self._address: Optional[ServerAddress] = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def address(self) -> Optional[ServerAddress]:
        return self._address

    def is_running(self) -> bool:
        return self._state == LifecycleState.RUNNING

    def start(self) -> ServerAddress:
        """
        Bind and start serving in the background.

        Returns:
            The bound address, family and port

        Raises:
            LifecycleError: Already started, not an IP endpoint, or startup timed out
            OSError: If the socket cannot be bound
        """
        if self._server is not None:
            raise LifecycleError("Server already started")

        self._state = LifecycleState.STARTING
        try:
            sock = bind_socket(self._host, self._port)
        except OSError:
            self._state = LifecycleState.FAILED
            raise

        try:
            address = describe_socket(sock)
        except LifecycleError:
            sock.close()
            self._state = LifecycleState.FAILED
            raise

        config = uvicorn.Config(
            self._app,
            log_config=None,
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=int(self._shutdown_timeout),
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(
            target=server.run,
            kwargs={"sockets": [sock]},
            name=f"localblobs-server-{address.port}",
            daemon=True,
        )
        thread.start()

        deadline = time.monotonic() + self._startup_timeout
        while not server.started:
            if not thread.is_alive() or time.monotonic() > deadline:
                server.should_exit = True
                thread.join(timeout=self._shutdown_timeout)
                sock.close()
                self._state = LifecycleState.FAILED
                raise LifecycleError(f"Server failed to start on {address.address}:{address.port}")
            time.sleep(0.01)

        self._server = server
        self._thread = thread
        self._socket = sock
        self._address = address
        self._state = LifecycleState.RUNNING
        logger.info(f"Listening on {address.address}:{address.port} ({address.family})")
        return address

    def stop(self) -> None:
        """Shut down gracefully; in-flight requests complete first."""
        if self._server is None:
            return

        self._state = LifecycleState.STOPPING
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=self._shutdown_timeout + 5)
            if self._thread.is_alive():
                logger.warning("Server thread did not exit within the shutdown timeout")
                self._server.force_exit = True
                self._thread.join(timeout=5)
        if self._socket is not None:
            self._socket.close()

        logger.info("Server stopped")
        self._server = None
        self._thread = None
        self._socket = None
        self._address = None
        self._state = LifecycleState.STOPPED

    def wait(self, poll_interval: float = 0.5) -> None:
        """Block until the server thread exits."""
        while self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=poll_interval)
