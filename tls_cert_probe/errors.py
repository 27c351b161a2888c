"""
Exception taxonomy for the certificate probe.

Every exception defined here is an environmental or configuration failure
that the check reports as UNKNOWN. Validation failures (missing names,
expiring certificates) are not exceptions; they are regular check outcomes.
"""

from typing import Optional


class ProbeError(Exception):
    """Base exception for all probe failures."""


class ConfigurationError(ProbeError):
    """Invalid command line flags, thresholds or configuration file."""


class NetworkError(ProbeError):
    """Base class for failures that involve a remote endpoint."""

    def __init__(self, message: str, host: Optional[str] = None, port: Optional[int] = None):
        super().__init__(message)
        self.host = host
        self.port = port


class ConnectError(NetworkError):
    """TCP connection, DNS resolution or socket I/O failure."""


class ProtocolError(NetworkError):
    """Unexpected server response during a STARTTLS preamble."""

    def __init__(
        self,
        message: str,
        line: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ):
        super().__init__(message, host=host, port=port)
        self.line = line


class HandshakeError(NetworkError):
    """TLS negotiation failed."""


class CertificateError(NetworkError):
    """The peer did not present a usable leaf certificate."""
