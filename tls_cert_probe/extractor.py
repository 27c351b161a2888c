"""
Leaf certificate retrieval.
"""

from typing import Optional

from cryptography import x509

from tls_cert_probe.errors import CertificateError
from tls_cert_probe.logger import get_logger, log_certificate_fetched
from tls_cert_probe.models import AcquiredCertificate, Endpoint, ProtocolVariant
from tls_cert_probe.negotiator import Deadline, create_tls_context, get_negotiator, handshake

logger = get_logger("extractor")


def fetch_certificate(
    endpoint: Endpoint, protocol: ProtocolVariant, timeout: float
) -> AcquiredCertificate:
    """
    Connect to the endpoint and return the certificate it presents.

    A new connection and handshake are made on every call.

    Args:
        endpoint: Service to check
        protocol: How to reach the TLS handshake
        timeout: Overall deadline for connect, preamble and handshake, in seconds

    Returns:
        The peer's leaf certificate

    Raises:
        ConnectError, ProtocolError, HandshakeError: if the connection fails
        CertificateError: if no usable certificate was presented
    """
    deadline = Deadline(timeout)
    sock = get_negotiator(protocol).negotiate(endpoint, deadline)
    try:
        with handshake(sock, endpoint, deadline, create_tls_context()) as tls_sock:
            der = tls_sock.getpeercert(binary_form=True)
    finally:
        sock.close()

    certificate = parse_certificate(der, endpoint)
    log_certificate_fetched(logger, str(endpoint), certificate.subject)
    return certificate


def parse_certificate(der: Optional[bytes], endpoint: Endpoint) -> AcquiredCertificate:
    """Decode the DER leaf certificate returned by the TLS layer."""
    if not der:
        raise CertificateError(
            f"{endpoint} did not present a certificate", host=endpoint.host, port=endpoint.port
        )
    try:
        cert = x509.load_der_x509_certificate(der)
        return AcquiredCertificate.from_x509(cert)
    except ValueError as e:
        raise CertificateError(
            f"cannot parse certificate from {endpoint}: {e}", host=endpoint.host, port=endpoint.port
        ) from e
