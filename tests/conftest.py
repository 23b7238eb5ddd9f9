"""
pytest configuration and fixtures.
"""

import dataclasses
import datetime
from typing import Callable, Generator, Iterable, Optional, Sequence, Tuple
import pytest

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from echoserver import EchoServer, ServerConfig
from echoserver.http import HTTPRequest, RequestParser, TlsSession


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample request head for a GET behind a proxy."""
    return (
        b"GET /api/users?page=1&tag=a&tag=b HTTP/1.1\r\n"
        b"Host: tobi.ferrets.example.com:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Cookie: session=abc123; theme=dark\r\n"
        b"X-Forwarded-For: 203.0.113.7, 10.0.0.2\r\n"
        b"Connection: keep-alive"
    )


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        http_port=0,  # Let OS pick a free port
        https_port=0,
        https_key_file="does-not-exist.pem",
        https_cert_file="does-not-exist.pem",
        min_workers=2,
        max_workers=8,
        timeout=5.0,
        keep_alive_timeout=2.0,
        shutdown_timeout=5.0,
        log_level="WARNING",
    )


@pytest.fixture
def make_request() -> Callable[..., HTTPRequest]:
    """
    Build an HTTPRequest without a socket.

        make_request("POST", "/x?a=1", headers={"Content-Type": "text/plain"}, body=b"hi")
    """
    parser = RequestParser()

    def factory(
        method: str = "GET",
        target: str = "/",
        headers: Optional[dict] = None,
        body: bytes = b"",
        chunks: Optional[Iterable[bytes]] = None,
        client_address: Tuple[str, int] = ("127.0.0.1", 54321),
        tls: Optional[TlsSession] = None,
    ) -> HTTPRequest:
        lines = [f"{method} {target} HTTP/1.1"]
        for name, value in (headers or {"Host": "localhost"}).items():
            lines.append(f"{name}: {value}")
        request = parser.parse("\r\n".join(lines).encode("latin-1"), client_address, tls)
        request.stream = iter(chunks if chunks is not None else ([body] if body else []))
        return request

    return factory


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[Callable[..., EchoServer], None, None]:
    """
    Start EchoServers on free ports; every one is shut down after the test.

        server = running_server(prometheus_enabled=True)
        host, port = server.http_address
    """
    servers = []

    def start(**overrides) -> EchoServer:
        server = EchoServer(dataclasses.replace(config, **overrides))
        server.start()
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.shutdown()


@pytest.fixture(scope="session")
def self_signed(tmp_path_factory) -> Callable[..., Tuple[Path, Path]]:
    """
    Write a self-signed certificate and its key as PEM files.

        key_path, cert_path = self_signed("client", "echo-client", alt_names=["client.test"])
    """
    directory = tmp_path_factory.mktemp("certs")

    def make(name: str, common_name: str, alt_names: Sequence[str] = ()) -> Tuple[Path, Path]:
        key = ec.generate_private_key(ec.SECP256R1())
        subject = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Echo Tests"),
        ])
        now = datetime.datetime.now(datetime.timezone.utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=1))
        )
        if alt_names:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(n) for n in alt_names]),
                critical=False,
            )
        certificate = builder.sign(key, hashes.SHA256())

        key_path = directory / f"{name}-key.pem"
        cert_path = directory / f"{name}-cert.pem"
        key_path.write_bytes(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ))
        cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
        return key_path, cert_path

    return make
