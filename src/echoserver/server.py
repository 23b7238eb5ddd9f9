"""
=============================================================================
ECHO SERVER
=============================================================================

Ties everything together: two listeners, one worker pool, the parser and
the application pipeline.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     ECHO SERVER ARCHITECTURE                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   EchoServer    │                          │
    │                        │ (Orchestrator)  │                          │
    │                        └────────┬────────┘                          │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐        │
    │    │ SocketServer │    │ SocketServer │    │  WorkerPool  │        │
    │    │    "http"    │    │   "https"    │    │              │        │
    │    └──────┬───────┘    └──────┬───────┘    └──────┬───────┘        │
    │           └──────── Connection ──────────────────►│                 │
    │                                                   ▼                 │
    │           ┌─────────────────────────────────────────┐               │
    │           │              EchoApp                    │               │
    │           │   CORS → Access log → Metrics → Echo    │               │
    │           └─────────────────────────────────────────┘               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    STOPPED ──start()──► STARTING ──► LISTENING ──shutdown()──► DRAINING
       ▲                                                           │
       └───────────────────────────────────────────────────────────┘

    start()
        1. configure logging, build the app, start the worker pool
        2. bind HTTP                    (failure is fatal)
        3. bind HTTPS if key AND cert exist on disk (checked once)

    shutdown()          strictly sequential:
        1. HTTP listener:  stop accepting, wait for in-flight requests
        2. HTTPS listener: the same
        3. worker pool

=============================================================================
REQUEST LIFECYCLE (per connection, on a worker thread)
=============================================================================

    1. TLS handshake (HTTPS only)
    2. read head                    431 if too large, 408 if too slow
    3. parse                        400 / 501 / 505 on bad input
    4. attach the body stream       read lazily by the echo handler
    5. run the app                  500 if it raises
    6. discard unread body bytes    keeps keep-alive in sync
    7. send                         HEAD gets headers only
    8. keep-alive? → back to 2

=============================================================================
"""

import logging
import signal
import threading
from enum import Enum
from typing import Optional, Tuple

from . import __version__
from .app import EchoApp, create_app
from .config import ServerConfig
from .core import Connection, SocketServer, WorkerPool, create_ssl_context
from .http import HTTPParseError, HTTPStatus, RequestParser, error_response


logger = logging.getLogger(__name__)


class ServerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"
    DRAINING = "draining"


class EchoServer:
    """
    HTTP + HTTPS echo server.

    =========================================================================
    USAGE
    =========================================================================

        # Blocking, with SIGINT/SIGTERM handling (what `python -m echoserver`
        # does):
        EchoServer(ServerConfig.from_env()).run()

        # Embedded (tests):
        server = EchoServer(ServerConfig(http_port=0))
        server.start()
        host, port = server.http_address
        ...
        server.shutdown()

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None, app: Optional[EchoApp] = None):
        """
        Args:
            config: Server configuration. Validated immediately.
            app: Pre-built application. Built from config at start() if None.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self.app = app
        self.state = ServerState.STOPPED

        self._parser = RequestParser()
        self._pool = WorkerPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )

        self.http: Optional[SocketServer] = None
        self.https: Optional[SocketServer] = None

        self._state_lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._original_handlers: dict = {}

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def http_address(self) -> Optional[Tuple[str, int]]:
        return self.http.address if self.http else None

    @property
    def https_address(self) -> Optional[Tuple[str, int]]:
        return self.https.address if self.https else None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self):
        """
        Bind the listeners and start serving in background threads.

        Raises:
            OSError: If a port cannot be bound or TLS material cannot be loaded.
            RuntimeError: If the server is already running.
        """
        with self._state_lock:
            if self.state != ServerState.STOPPED:
                raise RuntimeError(f"Cannot start server in state {self.state.value}")
            self.state = ServerState.STARTING

        self._setup_logging()
        self._stop_requested.clear()

        try:
            if self.app is None:
                self.app = create_app(self.config)

            self._pool.start()

            # ─────────────────────────────────────────────────────────────
            # HTTP: always
            # ─────────────────────────────────────────────────────────────
            self.http = SocketServer("http", self.config.host, self.config.http_port, self.config)
            self.http.start(self._handle_connection)

            # ─────────────────────────────────────────────────────────────
            # HTTPS: only with both key and certificate on disk
            # ─────────────────────────────────────────────────────────────
            if self.config.tls_files_present:
                context = create_ssl_context(self.config)
                self.https = SocketServer(
                    "https", self.config.host, self.config.https_port, self.config,
                    ssl_context=context,
                )
                self.https.start(self._handle_connection)
            else:
                logger.info(
                    f"HTTPS disabled: {self.config.https_key_file} and/or "
                    f"{self.config.https_cert_file} not found"
                )

        except Exception:
            self._abort_start()
            raise

        with self._state_lock:
            self.state = ServerState.LISTENING
        self._log_startup()

    def _abort_start(self):
        for listener in (self.http, self.https):
            if listener is not None:
                listener.close(timeout=0)
        self.http = self.https = None
        self._pool.shutdown(timeout=0)
        with self._state_lock:
            self.state = ServerState.STOPPED

    def run(self):
        """
        Start, then block until SIGINT/SIGTERM (or request_shutdown()),
        then shut down gracefully.
        """
        self.start()
        self._setup_signals()
        try:
            while not self._stop_requested.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._restore_signals()
            self.shutdown()

    def request_shutdown(self):
        """Ask run() to return. Safe from signal handlers and other threads."""
        self._stop_requested.set()

    def shutdown(self):
        """
        Graceful shutdown: HTTP, then HTTPS, then the worker pool.

        Each listener gets up to SHUTDOWN_TIMEOUT seconds for its in-flight
        requests. Idempotent.
        """
        with self._state_lock:
            if self.state in (ServerState.STOPPED, ServerState.DRAINING):
                return
            self.state = ServerState.DRAINING

        logger.info("Shutting down server...")
        timeout = self.config.shutdown_timeout

        if self.http is not None:
            self.http.close(timeout=timeout)
        if self.https is not None:
            self.https.close(timeout=timeout)

        self._pool.shutdown(timeout=5.0)

        with self._state_lock:
            self.state = ServerState.STOPPED
        self._stop_requested.set()
        logger.info("Server stopped")

    # =========================================================================
    # SETUP HELPERS
    # =========================================================================

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("echoserver").setLevel(level)

    def _setup_signals(self):
        """
        SIGTERM (docker stop, systemd, kill) and SIGINT (Ctrl+C) both start
        a graceful shutdown. Only the main thread may install handlers.
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.request_shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def _log_startup(self):
        logger.info(f"echoserver {__version__} ready")
        for listener in (self.http, self.https):
            if listener is not None:
                host, port = listener.address
                logger.info(f"  {listener.name}://{host}:{port}")
        logger.info(f"  workers: {self.config.min_workers}-{self.config.max_workers}")

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Called on a listener's accept thread: queue the connection."""
        self._pool.submit(self._process_connection, args=(conn,))

    def _process_connection(self, conn: Connection):
        """
        Serve one connection until it closes (runs in a worker thread).

        Implements the HTTP keep-alive loop described in the module docstring.
        """
        with conn:
            if not conn.handshake():
                return

            while True:
                try:
                    # ─────────────────────────────────────────────────────
                    # READ + PARSE HEAD
                    # ─────────────────────────────────────────────────────
                    head = conn.read_head()
                    if head is None:
                        break

                    request = self._parser.parse(head, conn.address, conn.tls)

                except HTTPParseError as e:
                    logger.debug(f"[{conn.id}] Bad request: {e}")
                    self._send_error(conn, e.status_code, str(e))
                    break

                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break

                stream = conn.body_stream(request)
                request.stream = stream
                conn.set_processing()

                # ─────────────────────────────────────────────────────────
                # RUN THE APP
                # ─────────────────────────────────────────────────────────
                keep_alive = request.is_keep_alive
                try:
                    response = self.app(request)
                except Exception as e:
                    logger.exception(f"[{conn.id}] Handler error: {e}")
                    response = error_response(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal Server Error")
                    keep_alive = False

                # ─────────────────────────────────────────────────────────
                # BODY BYTES THE APP DID NOT READ
                # ─────────────────────────────────────────────────────────
                # A client still waiting for "100 Continue" never sent its
                # body, so there is nothing to drain and the connection
                # cannot be reused safely.
                if not stream.finished:
                    if stream.awaiting_continue or not stream.drain():
                        keep_alive = False

                if conn.closing or (response.get_header("Connection") or "").lower() == "close":
                    keep_alive = False

                # ─────────────────────────────────────────────────────────
                # CONNECTION HEADERS
                # ─────────────────────────────────────────────────────────
                if keep_alive:
                    response.set_header("Connection", "keep-alive")
                    response.set_header("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
                else:
                    response.set_header("Connection", "close")

                data = response.to_bytes(self.config.server_name, head_only=request.method == "HEAD")
                if not conn.send_response(data):
                    break

                if not keep_alive:
                    break

                conn.set_keep_alive()

    def _send_error(self, conn: Connection, status: int, message: str):
        """Error response for failures before the app runs. Closes afterwards."""
        response = error_response(status, message)
        response.set_header("Connection", "close")
        conn.send_response(response.to_bytes(self.config.server_name))
