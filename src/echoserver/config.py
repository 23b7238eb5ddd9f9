"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized, immutable configuration for the echo server.

=============================================================================
WHY A FROZEN CONFIG CLASS?
=============================================================================

Every knob of the echo server is read ONCE, when the process starts, and
never changes while requests are being handled. A frozen dataclass makes
that contract explicit:

1. Centralized - One place to see all options
2. Typed - IDE autocomplete and error detection
3. Validated - Catch errors at startup, not on the first request
4. Immutable - Safe to share between worker threads without locking

Components receive the config through their constructors. Nothing inside
request handling ever reads os.environ directly.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m echoserver --http-port 3000                     │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── HTTP_PORT=3000 python -m echoserver                       │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
BOOLEAN FLAGS
=============================================================================

Environment variables are strings, so booleans need a convention:

    Opt-in flags (MTLS_ENABLE, PRESERVE_HEADER_CASE, ...)
        true only for the literal "true", anything else is false

    Opt-out flags (ECHO_BACK_TO_CLIENT, PROMETHEUS_WITH_METHOD, ...)
        true unless the value is the literal "false"

=============================================================================
"""

import os
import re
from dataclasses import dataclass
from typing import Optional, Mapping, Pattern


def _flag(env: Mapping[str, str], name: str) -> bool:
    """Opt-in boolean: only "true" enables it."""
    return env.get(name) == "true"


def _flag_default_on(env: Mapping[str, str], name: str) -> bool:
    """Opt-out boolean: everything except "false" keeps it enabled."""
    return env.get(name) != "false"


def _optional(env: Mapping[str, str], name: str) -> Optional[str]:
    """Read an optional string, treating the empty string as unset."""
    value = env.get(name)
    return value if value else None


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for the echo server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    LISTENERS
    - host, http_port, https_port, https_key_file, https_cert_file,
      mtls_enable

    REQUEST LIMITS
    - max_body_size, max_header_size, timeout, keep_alive_timeout

    ECHO BEHAVIOUR
    - echo_back_to_client, override_response_body_file_path,
      preserve_header_case, echo_include_env_vars, jwt_header

    CORS
    - cors_allow_origin, cors_allow_methods, cors_allow_headers,
      cors_allow_credentials

    PROMETHEUS
    - prometheus_enabled, prometheus_metrics_path, prometheus_with_path,
      prometheus_with_method, prometheus_with_status

    LOGGING
    - disable_request_logs, log_ignore_path, log_without_newline,
      log_level, log_format

    THREADING
    - min_workers, max_workers, shutdown_timeout

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # LISTENERS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Address both listeners bind to."""

    http_port: int = 8080
    """
    Plain HTTP port. Always bound.
    0 asks the OS for a free port (used by the test suite).
    """

    https_port: int = 8443
    """HTTPS port. Only bound when both TLS files exist at startup."""

    https_key_file: str = "testpk.pem"
    https_cert_file: str = "fullchain.pem"

    mtls_enable: bool = False
    """
    Request a client certificate during the TLS handshake.
    Clients that send none are still accepted, and a presented
    certificate is echoed without being verified.
    """

    backlog: int = 128
    buffer_size: int = 8192

    # ─────────────────────────────────────────────────────────────────────
    # REQUEST LIMITS
    # ─────────────────────────────────────────────────────────────────────

    max_body_size: int = 1024 * 1024  # 1 MB
    """
    Maximum request body in bytes, counted AFTER gzip decompression.
    0 disables the limit.
    """

    max_header_size: int = 16 * 1024  # 16 KB
    """Maximum size of the request line plus headers. Larger heads get 431."""

    timeout: Optional[float] = 30.0
    """Socket timeout for reading the first request on a connection."""

    keep_alive_timeout: float = 5.0
    """Idle time after which a keep-alive connection is closed."""

    # ─────────────────────────────────────────────────────────────────────
    # ECHO BEHAVIOUR
    # ─────────────────────────────────────────────────────────────────────

    echo_back_to_client: bool = True
    """When False every response body is empty."""

    override_response_body_file_path: Optional[str] = None
    """
    File whose contents replace every response body.
    Read once at startup; an empty file disables the override.
    """

    preserve_header_case: bool = False
    echo_include_env_vars: bool = False

    jwt_header: Optional[str] = None
    """Name of the header carrying a JWT to decode, e.g. "Authorization"."""

    # ─────────────────────────────────────────────────────────────────────
    # CORS
    # ─────────────────────────────────────────────────────────────────────
    # Values are sent verbatim. CORS is only active when an origin is set.

    cors_allow_origin: Optional[str] = None
    cors_allow_methods: Optional[str] = None
    cors_allow_headers: Optional[str] = None
    cors_allow_credentials: Optional[str] = None

    # ─────────────────────────────────────────────────────────────────────
    # PROMETHEUS
    # ─────────────────────────────────────────────────────────────────────

    prometheus_enabled: bool = False
    prometheus_metrics_path: str = "/metrics"
    prometheus_with_path: bool = False
    """Off by default: one label value per distinct path explodes cardinality."""
    prometheus_with_method: bool = True
    prometheus_with_status: bool = True

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    disable_request_logs: bool = False
    """Silences the access log and the echo record. Lifecycle logs stay."""

    log_ignore_path: Optional[str] = None
    """Regex searched against the request path; matches are not logged."""

    log_without_newline: bool = False
    """Log the echo record as single-line JSON instead of pretty-printed."""

    log_level: str = "INFO"

    log_format: str = "text"
    """
    Access log format: 'json' or 'text'.
    JSON is better for log aggregators, text is better for humans.
    """

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL / LIFECYCLE
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 8
    max_workers: int = 64

    shutdown_timeout: float = 30.0
    """Seconds to wait for in-flight requests on each listener while draining."""

    server_name: str = "echoserver"

    @property
    def ignore_path_pattern(self) -> Optional[Pattern]:
        """LOG_IGNORE_PATH compiled, or None when unset."""
        return re.compile(self.log_ignore_path) if self.log_ignore_path else None

    @property
    def tls_files_present(self) -> bool:
        """True when both the key and the certificate exist on disk."""
        return os.path.isfile(self.https_key_file) and os.path.isfile(self.https_cert_file)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HTTP_PORT / PORT            HTTP port (default: 8080)
        HTTPS_PORT                  HTTPS port (default: 8443)
        HTTPS_KEY_FILE              TLS key (default: testpk.pem)
        HTTPS_CERT_FILE             TLS cert chain (default: fullchain.pem)
        MTLS_ENABLE                 "true" requests client certificates
        MAX_BODY_SIZE               Body limit in bytes, 0 = unlimited
        MAX_HEADER_SIZE             Request head limit in bytes
        ECHO_BACK_TO_CLIENT         "false" sends empty bodies
        OVERRIDE_RESPONSE_BODY_FILE_PATH
        PRESERVE_HEADER_CASE        "true" keeps header casing
        ECHO_INCLUDE_ENV_VARS       "true" adds the environment
        JWT_HEADER                  Header to decode as a JWT
        CORS_ALLOW_ORIGIN / _METHODS / _HEADERS / _CREDENTIALS
        PROMETHEUS_ENABLED          "true" enables metrics
        PROMETHEUS_METRICS_PATH     Scrape path (default: /metrics)
        PROMETHEUS_WITH_PATH / _WITH_METHOD / _WITH_STATUS
        DISABLE_REQUEST_LOGS        "true" silences request logs
        LOG_IGNORE_PATH             Regex of paths not to log
        LOG_WITHOUT_NEWLINE         "true" logs single-line JSON
        LOG_LEVEL / LOG_FORMAT      Logging verbosity and access format
        HOST                        Bind address (default: 0.0.0.0)
        MIN_WORKERS / MAX_WORKERS   Thread pool bounds
        SHUTDOWN_TIMEOUT            Drain timeout per listener

        =====================================================================
        USAGE
        =====================================================================

        # From shell:
        HTTP_PORT=3000 PROMETHEUS_ENABLED=true python -m echoserver

        # In code:
        config = ServerConfig.from_env()
        server = EchoServer(config)

        =====================================================================

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Raises:
            ValueError: If a numeric variable is not a number.
        """
        env = os.environ if environ is None else environ

        return cls(
            host=env.get("HOST", "0.0.0.0"),
            http_port=int(env.get("HTTP_PORT") or env.get("PORT") or 8080),
            https_port=int(env.get("HTTPS_PORT") or 8443),
            https_key_file=env.get("HTTPS_KEY_FILE") or "testpk.pem",
            https_cert_file=env.get("HTTPS_CERT_FILE") or "fullchain.pem",
            mtls_enable=_flag(env, "MTLS_ENABLE"),
            max_body_size=int(env.get("MAX_BODY_SIZE") or 1024 * 1024),
            max_header_size=int(env.get("MAX_HEADER_SIZE") or 16 * 1024),
            echo_back_to_client=_flag_default_on(env, "ECHO_BACK_TO_CLIENT"),
            override_response_body_file_path=_optional(env, "OVERRIDE_RESPONSE_BODY_FILE_PATH"),
            preserve_header_case=_flag(env, "PRESERVE_HEADER_CASE"),
            echo_include_env_vars=_flag(env, "ECHO_INCLUDE_ENV_VARS"),
            jwt_header=_optional(env, "JWT_HEADER"),
            cors_allow_origin=_optional(env, "CORS_ALLOW_ORIGIN"),
            cors_allow_methods=_optional(env, "CORS_ALLOW_METHODS"),
            cors_allow_headers=_optional(env, "CORS_ALLOW_HEADERS"),
            cors_allow_credentials=_optional(env, "CORS_ALLOW_CREDENTIALS"),
            prometheus_enabled=_flag(env, "PROMETHEUS_ENABLED"),
            prometheus_metrics_path=env.get("PROMETHEUS_METRICS_PATH") or "/metrics",
            prometheus_with_path=_flag(env, "PROMETHEUS_WITH_PATH"),
            prometheus_with_method=_flag_default_on(env, "PROMETHEUS_WITH_METHOD"),
            prometheus_with_status=_flag_default_on(env, "PROMETHEUS_WITH_STATUS"),
            disable_request_logs=_flag(env, "DISABLE_REQUEST_LOGS"),
            log_ignore_path=_optional(env, "LOG_IGNORE_PATH"),
            log_without_newline=_flag(env, "LOG_WITHOUT_NEWLINE"),
            log_level=env.get("LOG_LEVEL") or "INFO",
            log_format=env.get("LOG_FORMAT") or "text",
            min_workers=int(env.get("MIN_WORKERS") or 8),
            max_workers=int(env.get("MAX_WORKERS") or 64),
            shutdown_timeout=float(env.get("SHUTDOWN_TIMEOUT") or 30),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        =====================================================================
        FAIL-FAST PRINCIPLE
        =====================================================================

        We validate configuration at startup, not at first use.
        A typo in LOG_IGNORE_PATH should stop the process immediately,
        not turn into a 500 on the first request that gets logged.

        =====================================================================
        """
        for name in ("http_port", "https_port"):
            port = getattr(self, name)
            if not 0 <= port < 65536:
                raise ValueError(f"Invalid {name}: {port}. Must be 0-65535.")

        if self.max_body_size < 0:
            raise ValueError("max_body_size must be >= 0 (0 = unlimited)")

        if self.max_header_size < 1024:
            raise ValueError("max_header_size must be >= 1024")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")

        if self.log_ignore_path:
            try:
                re.compile(self.log_ignore_path)
            except re.error as e:
                raise ValueError(f"Invalid LOG_IGNORE_PATH pattern: {e}") from e
