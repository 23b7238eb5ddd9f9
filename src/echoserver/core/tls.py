"""
=============================================================================
TLS CONTEXT, SOCKETS AND CERTIFICATES
=============================================================================

The HTTPS listener runs on pyOpenSSL. The standard ssl module can ask for
a client certificate, but it always verifies one that is presented, so a
self-signed client certificate would fail the handshake. An echo server
shows whatever the client sent, trusted or not.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      HTTPS LISTENER TLS SETUP                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   HTTPS_CERT_FILE + HTTPS_KEY_FILE                                   │
    │     └── use_certificate_chain_file() / use_privatekey_file()        │
    │                                                                      │
    │   MTLS_ENABLE=true                                                   │
    │     └── set_verify(VERIFY_PEER, accept everything)                   │
    │         no certificate      → served, no clientCertificate          │
    │         any certificate     → served, clientCertificate echoed      │
    │                                                                      │
    │   SNI                                                                │
    │     └── read back from the connection after the handshake           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TlsSocket
=============================================================================

Connection talks to a socket: recv, sendall, settimeout, shutdown, close.
TlsSocket offers the same calls on top of an OpenSSL.SSL.Connection.

pyOpenSSL reports "would block" (WantReadError / WantWriteError) and
leaves the waiting to the caller, so the raw socket is non-blocking and
every call waits with a selector, bounded by the current timeout:

    recv()
      └── tls.recv() ──► WantReadError ──► wait readable ──► retry
                    └──► data / b"" on close_notify or EOF

All TLS failures come out as TlsError, an OSError, just like
ssl.SSLError does in the standard library.

=============================================================================
"""

import logging
import selectors
import socket
from typing import Any, Callable, Dict, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID
from OpenSSL import SSL

from ..config import ServerConfig


logger = logging.getLogger(__name__)

# Largest TLS record payload
_MAX_RECORD = 16384

_NAME_KEYS = {
    NameOID.COMMON_NAME: "CN",
    NameOID.COUNTRY_NAME: "C",
    NameOID.STATE_OR_PROVINCE_NAME: "ST",
    NameOID.LOCALITY_NAME: "L",
    NameOID.ORGANIZATION_NAME: "O",
    NameOID.ORGANIZATIONAL_UNIT_NAME: "OU",
    NameOID.EMAIL_ADDRESS: "emailAddress",
}

_SAN_PREFIXES = {
    x509.DNSName: "DNS",
    x509.IPAddress: "IP Address",
    x509.RFC822Name: "email",
    x509.UniformResourceIdentifier: "URI",
}


class TlsError(OSError):
    """A TLS handshake or record-layer failure."""


# =============================================================================
# CONTEXT
# =============================================================================

def create_ssl_context(config: ServerConfig) -> SSL.Context:
    """
    Create the TLS context for the HTTPS listener.

    Raises:
        TlsError: If the certificate or key cannot be loaded. The server
            treats this as a fatal startup error.
    """
    context = SSL.Context(SSL.TLS_SERVER_METHOD)
    context.set_min_proto_version(SSL.TLS1_2_VERSION)

    try:
        context.use_certificate_chain_file(config.https_cert_file)
        context.use_privatekey_file(config.https_key_file)
        context.check_privatekey()
    except SSL.Error as e:
        raise TlsError(
            f"Cannot load {config.https_cert_file} / {config.https_key_file}: {e}"
        ) from e

    if config.mtls_enable:
        context.set_verify(SSL.VERIFY_PEER, _accept_any_certificate)
        # Session resumption with VERIFY_PEER fails without one
        context.set_session_id(b"echoserver")
        logger.info("Client certificates requested (not verified)")

    return context


def _accept_any_certificate(connection, certificate, errno, depth, ok) -> bool:
    return True


def _is_eof(error: SSL.Error) -> bool:
    """TCP closed without close_notify, as OpenSSL 1.1 and 3.x report it."""
    if isinstance(error, SSL.SysCallError):
        return bool(error.args) and error.args[0] == -1
    return "unexpected eof" in str(error).lower()


# =============================================================================
# SOCKET
# =============================================================================

class TlsSocket:
    """
    Server side of one TLS connection, with the socket calls Connection uses.

    Usage:
        tls = TlsSocket(context, raw_socket)
        tls.settimeout(30)
        tls.do_handshake()
        tls.recv(8192)
    """

    def __init__(self, context: SSL.Context, sock: socket.socket):
        self._timeout: Optional[float] = sock.gettimeout()
        sock.setblocking(False)
        self._sock = sock
        self._tls = SSL.Connection(context, sock)
        self._tls.set_accept_state()

    # ─────────────────────────────────────────────────────────────────────
    # socket API
    # ─────────────────────────────────────────────────────────────────────

    def settimeout(self, timeout: Optional[float]):
        self._timeout = timeout

    def gettimeout(self) -> Optional[float]:
        return self._timeout

    def setblocking(self, flag: bool):
        self._timeout = None if flag else 0.0

    def fileno(self) -> int:
        return self._sock.fileno()

    def do_handshake(self):
        try:
            self._retry(self._tls.do_handshake)
        except SSL.Error as e:
            raise TlsError(f"Handshake failed: {e}") from e

    def recv(self, bufsize: int) -> bytes:
        try:
            return self._retry(self._tls.recv, bufsize)
        except SSL.ZeroReturnError:
            return b""
        except SSL.Error as e:
            if _is_eof(e):
                return b""
            raise TlsError(f"Read failed: {e}") from e

    def sendall(self, data: bytes):
        offset = 0
        while offset < len(data):
            # The same buffer must be offered again after a WantWriteError
            record = data[offset:offset + _MAX_RECORD]
            try:
                offset += self._retry(self._tls.send, record)
            except SSL.Error as e:
                raise TlsError(f"Write failed: {e}") from e

    def shutdown(self, how: int):
        """
        Shut down the raw socket. SHUT_WR sends close_notify first.

        SHUT_RDWR never enters OpenSSL, so another thread may use it to
        wake a worker blocked in recv().
        """
        if how == socket.SHUT_WR:
            try:
                self._tls.shutdown()
            except SSL.Error as e:
                logger.debug(f"close_notify not sent: {e}")
        self._sock.shutdown(how)

    def close(self):
        self._sock.close()

    # ─────────────────────────────────────────────────────────────────────
    # Session facts, valid after do_handshake()
    # ─────────────────────────────────────────────────────────────────────

    @property
    def server_name(self) -> str:
        name = self._tls.get_servername()
        return name.decode("ascii", errors="replace") if name else ""

    @property
    def version(self) -> Optional[str]:
        return self._tls.get_protocol_version_name()

    @property
    def cipher(self) -> Optional[str]:
        return self._tls.get_cipher_name()

    def peer_certificate(self) -> Optional[x509.Certificate]:
        certificate = self._tls.get_peer_certificate()
        return certificate.to_cryptography() if certificate is not None else None

    # ─────────────────────────────────────────────────────────────────────

    def _retry(self, operation: Callable[..., Any], *args) -> Any:
        while True:
            try:
                return operation(*args)
            except SSL.WantReadError:
                self._wait(selectors.EVENT_READ)
            except SSL.WantWriteError:
                self._wait(selectors.EVENT_WRITE)

    def _wait(self, event: int):
        with selectors.DefaultSelector() as selector:
            selector.register(self._sock, event)
            if not selector.select(self._timeout):
                raise socket.timeout("timed out")


# =============================================================================
# CERTIFICATES
# =============================================================================

def describe_certificate(certificate: Optional[x509.Certificate]) -> Dict[str, Any]:
    """
    Flatten a peer certificate for the echo document.

        subject   CN=echo-client,O=Example  →  {"CN": "echo-client", "O": "Example"}

    Returns:
        {} when the client sent no certificate. Otherwise subject, issuer,
        validity window, serial number, subjectaltname (when present) and
        the SHA-1 / SHA-256 fingerprints as colon-separated uppercase hex.
    """
    if certificate is None:
        return {}

    serial = f"{certificate.serial_number:X}"
    described: Dict[str, Any] = {
        "subject": _flatten_name(certificate.subject),
        "issuer": _flatten_name(certificate.issuer),
        "valid_from": _openssl_time(certificate.not_valid_before_utc),
        "valid_to": _openssl_time(certificate.not_valid_after_utc),
        "serialNumber": serial.zfill(len(serial) + len(serial) % 2),
        "fingerprint": _fingerprint(certificate, hashes.SHA1()),
        "fingerprint256": _fingerprint(certificate, hashes.SHA256()),
    }

    alt_names = _subject_alt_names(certificate)
    if alt_names:
        described["subjectaltname"] = alt_names

    return described


def _flatten_name(name: x509.Name) -> Dict[str, str]:
    flat: Dict[str, str] = {}
    for attribute in name:
        key = _NAME_KEYS.get(attribute.oid, attribute.oid.dotted_string)
        value = attribute.value
        flat[key] = value if isinstance(value, str) else value.hex()
    return flat


def _subject_alt_names(certificate: x509.Certificate) -> str:
    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return ""
    except ValueError as e:
        # Client certificates are not verified, so they may be malformed
        logger.debug(f"Unreadable certificate extensions: {e}")
        return ""

    names = []
    for general_name in extension.value:
        prefix = _SAN_PREFIXES.get(type(general_name))
        if prefix is not None:
            names.append(f"{prefix}:{general_name.value}")
    return ", ".join(names)


def _openssl_time(moment) -> str:
    # "Jan  1 00:00:00 2030 GMT", the format OpenSSL prints
    return f"{moment:%b} {moment.day:2d} {moment:%H:%M:%S %Y} GMT"


def _fingerprint(certificate: x509.Certificate, algorithm: hashes.HashAlgorithm) -> str:
    digest = certificate.fingerprint(algorithm).hex().upper()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))
