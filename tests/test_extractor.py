"""
Tests for certificate retrieval.

The integration tests run a real TLS listener on 127.0.0.1 serving a freshly
generated certificate.

Run with: pytest tests/test_extractor.py -v
"""

import socket
import ssl
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from cryptography.hazmat.primitives import serialization

from conftest import generate_test_certificate, write_key_pair
from tls_cert_probe.errors import CertificateError, HandshakeError, ProtocolError
from tls_cert_probe.extractor import fetch_certificate, parse_certificate
from tls_cert_probe.models import AcquiredCertificate, Endpoint, ProtocolVariant

ENDPOINT = Endpoint(host="host.example", port=443)


class TestParseCertificate:
    """Test decoding of the DER leaf certificate."""

    def test_parse_certificate(self, private_key):
        """Test that names and expiry are extracted."""
        not_after = datetime(2031, 5, 17, 12, 0, 0, tzinfo=timezone.utc)
        cert = generate_test_certificate(
            private_key,
            cn="host.example",
            san=["host.example", "www.host.example"],
            not_after=not_after,
        )

        result = parse_certificate(cert.public_bytes(serialization.Encoding.DER), ENDPOINT)

        assert isinstance(result, AcquiredCertificate)
        assert result.common_name == "host.example"
        assert result.subject == "CN=host.example,O=Test Org,C=US"
        assert result.subject_alternative_names == ("host.example", "www.host.example")
        assert result.not_after == not_after

    def test_parse_certificate_without_san(self, private_key):
        """Test that a missing SAN extension yields an empty tuple."""
        cert = generate_test_certificate(private_key, cn="legacy.example")

        result = parse_certificate(cert.public_bytes(serialization.Encoding.DER), ENDPOINT)

        assert result.subject_alternative_names == ()
        assert result.subject.startswith("CN=legacy.example,")

    def test_no_certificate(self):
        """Test that an empty peer certificate is reported, not crashed on."""
        with pytest.raises(CertificateError, match="did not present a certificate"):
            parse_certificate(None, ENDPOINT)

    def test_garbage_certificate(self):
        """Test that undecodable DER is reported."""
        with pytest.raises(CertificateError, match="cannot parse certificate"):
            parse_certificate(b"not a certificate", ENDPOINT)


class TestFetchCertificate:
    """Test the negotiate/handshake/extract sequence with mocked transports."""

    def test_protocol_error_skips_handshake(self):
        """Test that a failed preamble never reaches the TLS layer."""
        negotiator = MagicMock()
        negotiator.negotiate.side_effect = ProtocolError("unexpected SMTP reply: 554 go away")

        with patch("tls_cert_probe.extractor.get_negotiator", return_value=negotiator), patch(
            "tls_cert_probe.extractor.handshake"
        ) as mock_handshake:
            with pytest.raises(ProtocolError):
                fetch_certificate(ENDPOINT, ProtocolVariant.SMTP, 5)

        mock_handshake.assert_not_called()

    def test_handshake_error_closes_socket(self):
        """Test that the negotiated socket is closed when the handshake fails."""
        sock = MagicMock(spec=socket.socket)
        negotiator = MagicMock()
        negotiator.negotiate.return_value = sock

        with patch("tls_cert_probe.extractor.get_negotiator", return_value=negotiator), patch(
            "tls_cert_probe.extractor.handshake", side_effect=HandshakeError("boom")
        ):
            with pytest.raises(HandshakeError):
                fetch_certificate(ENDPOINT, ProtocolVariant.DIRECT_TLS, 5)

        sock.close.assert_called_once()

    def test_peer_without_certificate(self):
        """Test that a handshake without a peer certificate is a CertificateError."""
        tls_sock = MagicMock()
        tls_sock.__enter__.return_value = tls_sock
        tls_sock.getpeercert.return_value = None
        negotiator = MagicMock()

        with patch("tls_cert_probe.extractor.get_negotiator", return_value=negotiator), patch(
            "tls_cert_probe.extractor.handshake", return_value=tls_sock
        ):
            with pytest.raises(CertificateError):
                fetch_certificate(ENDPOINT, ProtocolVariant.DIRECT_TLS, 5)

        tls_sock.getpeercert.assert_called_once_with(binary_form=True)


@pytest.fixture
def tls_server(tmp_path, private_key):
    """
    Start a one-shot TLS server; returns ``start(preamble=None) -> port``.

    ``preamble`` is called with the plaintext connection before the TLS
    handshake, to emulate STARTTLS servers.
    """
    cert = generate_test_certificate(
        private_key,
        cn="localhost",
        san=["localhost", "127.0.0.1"],
        not_after=datetime.now(timezone.utc) + timedelta(days=30),
    )
    cert_path, key_path = write_key_pair(tmp_path, private_key, cert)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(cert_path), str(key_path))

    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    threads = []

    def serve(preamble):
        conn, _ = listener.accept()
        with conn:
            conn.settimeout(5)
            if preamble:
                preamble(conn)
            try:
                with context.wrap_socket(conn, server_side=True) as tls_conn:
                    tls_conn.recv(1)
            except (ssl.SSLError, OSError):
                pass

    def start(preamble=None):
        thread = threading.Thread(target=serve, args=(preamble,), daemon=True)
        thread.start()
        threads.append(thread)
        return listener.getsockname()[1]

    yield start

    for thread in threads:
        thread.join(timeout=5)
    listener.close()


def smtp_preamble(conn):
    reader = conn.makefile("rb")
    conn.sendall(b"220 localhost ESMTP test\r\n")
    assert reader.readline() == b"HELO localhost\r\n"
    conn.sendall(b"250 localhost\r\n")
    assert reader.readline() == b"STARTTLS\r\n"
    conn.sendall(b"220 ready\r\n")
    reader.close()


def sieve_preamble(conn):
    reader = conn.makefile("rb")
    conn.sendall(b'"IMPLEMENTATION" "test"\r\n"STARTTLS"\r\nOK "ready"\r\n')
    assert reader.readline() == b"STARTTLS\r\n"
    conn.sendall(b'OK "go"\r\n')
    reader.close()


@pytest.mark.integration
class TestFetchCertificateIntegration:
    """Fetch certificates from a real local TLS listener."""

    def test_direct_tls(self, tls_server):
        """Test a plain TLS handshake."""
        port = tls_server()

        cert = fetch_certificate(Endpoint("127.0.0.1", port), ProtocolVariant.DIRECT_TLS, 5)

        assert cert.common_name == "localhost"
        assert cert.subject_alternative_names == ("localhost", "127.0.0.1")

    def test_smtp_starttls(self, tls_server):
        """Test the SMTP upgrade followed by the handshake."""
        port = tls_server(smtp_preamble)

        cert = fetch_certificate(Endpoint("127.0.0.1", port), ProtocolVariant.SMTP, 5)

        assert cert.common_name == "localhost"

    def test_sieve_starttls(self, tls_server):
        """Test the ManageSieve upgrade followed by the handshake."""
        port = tls_server(sieve_preamble)

        cert = fetch_certificate(Endpoint("127.0.0.1", port), ProtocolVariant.SIEVE, 5)

        assert cert.common_name == "localhost"

    def test_plaintext_server_fails_handshake(self, tls_server):
        """Test that talking TLS to a server expecting STARTTLS fails the handshake."""

        def chatty(conn):
            conn.sendall(b"220 localhost ESMTP test\r\n")

        port = tls_server(chatty)

        with pytest.raises(HandshakeError):
            fetch_certificate(Endpoint("127.0.0.1", port), ProtocolVariant.DIRECT_TLS, 5)
