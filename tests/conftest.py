"""
Shared fixtures: throwaway certificates and scripted plaintext servers.
"""

import socket
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from tls_cert_probe.config import CheckConfig


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    """One RSA key for every generated certificate."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def generate_test_certificate(
    key: rsa.RSAPrivateKey,
    cn: str = "test.example.com",
    san: Optional[Sequence[str]] = None,
    not_after: Optional[datetime] = None,
    subject_attributes: Optional[Sequence[Tuple[x509.ObjectIdentifier, str]]] = None,
) -> x509.Certificate:
    """
    Generate a self-signed X.509 certificate; ``san=None`` omits the extension.

    ``subject_attributes`` replaces the default C, O, CN subject and is
    encoded in the order given.
    """
    now = datetime.now(timezone.utc)
    if subject_attributes is None:
        subject_attributes = [
            (NameOID.COUNTRY_NAME, "US"),
            (NameOID.ORGANIZATION_NAME, "Test Org"),
            (NameOID.COMMON_NAME, cn),
        ]
    subject = issuer = x509.Name(
        [x509.NameAttribute(oid, value) for oid, value in subject_attributes]
    )

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=365))
    )
    if san is not None:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in san]),
            critical=False,
        )
    return builder.sign(key, hashes.SHA256())


def write_key_pair(
    directory: Path, key: rsa.RSAPrivateKey, cert: x509.Certificate
) -> Tuple[Path, Path]:
    """Write PEM certificate and key files for ``ssl.SSLContext.load_cert_chain``."""
    cert_path = directory / "server.crt"
    key_path = directory / "server.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


class ScriptedServer(threading.Thread):
    """
    Plays the server side of a plaintext preamble.

    The script is a list of ``("send", text)`` and ``("recv", None)`` steps;
    received lines are stored in ``received`` without their terminator.
    """

    def __init__(self, sock: socket.socket, script: List[Tuple[str, Optional[str]]]):
        super().__init__(daemon=True)
        self.sock = sock
        self.script = script
        self.received: List[str] = []

    def run(self) -> None:
        reader = self.sock.makefile("rb")
        try:
            for action, text in self.script:
                if action == "send":
                    self.sock.sendall(text.encode("utf-8"))
                else:
                    line = reader.readline()
                    if not line:
                        return
                    self.received.append(line.decode("ascii").rstrip("\r\n"))
        except OSError:
            return
        finally:
            reader.close()


@pytest.fixture
def socket_pair():
    """Connected client/server sockets; both are closed after the test."""
    client, server = socket.socketpair()
    yield client, server
    client.close()
    server.close()


@pytest.fixture
def make_config():
    """Build a valid configuration with overridable fields."""

    def _make(**overrides) -> CheckConfig:
        settings = {"hostname": "host.example", "port": 443}
        settings.update(overrides)
        return CheckConfig(**settings)

    return _make
