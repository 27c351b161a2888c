"""
Transport negotiation for the certificate probe.

Each negotiator opens a TCP connection and runs whatever plaintext exchange
its protocol needs before the TLS ClientHello may be sent. The TLS handshake
itself is shared by all protocols.
"""

import re
import select
import socket
import ssl
import time
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Mapping, Optional, Union

from tls_cert_probe.errors import ConfigurationError, ConnectError, HandshakeError, ProtocolError
from tls_cert_probe.logger import get_logger, log_negotiation_step
from tls_cert_probe.models import Endpoint, ProtocolVariant

logger = get_logger("negotiator")

# Longest preamble line we are willing to buffer
MAX_LINE_LENGTH = 4096
RECV_SIZE = 1024

# Reply code followed by nothing, a space or the continuation dash
_SMTP_REPLY = re.compile(r"(\d{3})([ -]|$)", re.ASCII)


class Deadline:
    """Overall time budget shared by every blocking step of a check."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._expires = time.monotonic() + timeout

    def remaining(self) -> float:
        """
        Seconds left before the deadline.

        Raises:
            TimeoutError: if the budget is exhausted
        """
        left = self._expires - time.monotonic()
        if left <= 0:
            raise TimeoutError(f"timed out after {self.timeout:g}s")
        return left


class _LineChannel:
    """CRLF line-oriented exchange over a plaintext socket."""

    def __init__(self, sock: socket.socket, deadline: Deadline):
        self._sock = sock
        self._deadline = deadline
        self._buffer = bytearray()

    def send(self, command: str) -> None:
        self._sock.settimeout(self._deadline.remaining())
        self._sock.sendall(command.encode("ascii") + b"\r\n")

    def read_line(self) -> Optional[str]:
        """
        Read one line without its terminator; ``None`` once the server has closed.

        The deadline is re-armed before every ``recv`` so that a server
        trickling bytes cannot stretch the check past it.
        """
        while b"\n" not in self._buffer and len(self._buffer) < MAX_LINE_LENGTH:
            self._sock.settimeout(self._deadline.remaining())
            chunk = self._sock.recv(RECV_SIZE)
            if not chunk:
                break
            self._buffer += chunk

        if not self._buffer:
            return None
        end = self._buffer.find(b"\n") + 1 or len(self._buffer)
        end = min(end, MAX_LINE_LENGTH)
        raw = bytes(self._buffer[:end])
        del self._buffer[:end]
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")


class Negotiator(ABC):
    """Produces a socket on which a TLS handshake can start immediately."""

    protocol: ProtocolVariant

    def negotiate(self, endpoint: Endpoint, deadline: Deadline) -> socket.socket:
        """
        Connect to the endpoint and run the protocol preamble.

        Args:
            endpoint: Service to connect to
            deadline: Time budget for connect and preamble

        Returns:
            Connected socket, ready for the TLS handshake

        Raises:
            ConnectError: if connecting or socket I/O fails
            ProtocolError: if the server answers unexpectedly
        """
        sock = self._connect(endpoint, deadline)
        try:
            self._preamble(sock, endpoint, deadline)
        except ProtocolError:
            sock.close()
            raise
        except OSError as e:
            sock.close()
            raise ConnectError(
                f"{endpoint}: {e}", host=endpoint.host, port=endpoint.port
            ) from e
        return sock

    def _connect(self, endpoint: Endpoint, deadline: Deadline) -> socket.socket:
        try:
            sock = socket.create_connection(endpoint.address, timeout=deadline.remaining())
        except (OSError, UnicodeError) as e:
            raise ConnectError(
                f"cannot connect to {endpoint}: {e}", host=endpoint.host, port=endpoint.port
            ) from e
        log_negotiation_step(logger, str(endpoint), self.protocol.value, "connected")
        return sock

    @abstractmethod
    def _preamble(self, sock: socket.socket, endpoint: Endpoint, deadline: Deadline) -> None:
        """Run the plaintext exchange; socket errors are mapped by the caller."""


class DirectTLSNegotiator(Negotiator):
    """Plain TLS: the handshake starts as soon as TCP is up."""

    protocol = ProtocolVariant.DIRECT_TLS

    def _preamble(self, sock: socket.socket, endpoint: Endpoint, deadline: Deadline) -> None:
        return None


class SMTPStartTLSNegotiator(Negotiator):
    """SMTP: greeting (220), ``HELO localhost`` (250), ``STARTTLS`` (220)."""

    protocol = ProtocolVariant.SMTP

    def _preamble(self, sock: socket.socket, endpoint: Endpoint, deadline: Deadline) -> None:
        channel = _LineChannel(sock, deadline)
        self._expect(channel, endpoint, 220, "greeting")
        self._command(channel, endpoint, "HELO localhost", 250)
        self._command(channel, endpoint, "STARTTLS", 220)

    def _command(self, channel: _LineChannel, endpoint: Endpoint, command: str, code: int) -> None:
        channel.send(command)
        self._expect(channel, endpoint, code, command)

    def _expect(self, channel: _LineChannel, endpoint: Endpoint, code: int, step: str) -> None:
        """Read a possibly multi-line reply and check every line's status code."""
        while True:
            line = channel.read_line()
            if line is None:
                raise ProtocolError(
                    "connection closed by server", host=endpoint.host, port=endpoint.port
                )
            match = _SMTP_REPLY.match(line)
            if match is None:
                raise ProtocolError(
                    f"malformed SMTP reply: {line}",
                    line=line,
                    host=endpoint.host,
                    port=endpoint.port,
                )
            if int(match.group(1)) != code:
                raise ProtocolError(
                    f"unexpected SMTP reply: {line}",
                    line=line,
                    host=endpoint.host,
                    port=endpoint.port,
                )
            if match.group(2) != "-":
                log_negotiation_step(logger, str(endpoint), self.protocol.value, step, line)
                return


class SieveStartTLSNegotiator(Negotiator):
    """ManageSieve: wait for ``OK``, send ``STARTTLS``, wait for ``OK`` again."""

    protocol = ProtocolVariant.SIEVE

    def _preamble(self, sock: socket.socket, endpoint: Endpoint, deadline: Deadline) -> None:
        channel = _LineChannel(sock, deadline)
        self._wait_ok(channel, endpoint, "greeting")
        channel.send("STARTTLS")
        self._wait_ok(channel, endpoint, "STARTTLS")

    def _wait_ok(self, channel: _LineChannel, endpoint: Endpoint, step: str) -> None:
        """Skip capability lines until the server answers ``OK``, ``NO`` or ``BYE``."""
        while True:
            line = channel.read_line()
            if line is None:
                raise ProtocolError(
                    "connection closed by server", host=endpoint.host, port=endpoint.port
                )
            if line.startswith("OK"):
                log_negotiation_step(logger, str(endpoint), self.protocol.value, step, line)
                return
            if line.startswith("NO "):
                raise ProtocolError(line[3:], line=line, host=endpoint.host, port=endpoint.port)
            if line.startswith("BYE "):
                raise ProtocolError(line[4:], line=line, host=endpoint.host, port=endpoint.port)


# Supported protocols, keyed by their command line identifier
NEGOTIATORS: Mapping[ProtocolVariant, Negotiator] = MappingProxyType(
    {
        ProtocolVariant.DIRECT_TLS: DirectTLSNegotiator(),
        ProtocolVariant.SMTP: SMTPStartTLSNegotiator(),
        ProtocolVariant.SIEVE: SieveStartTLSNegotiator(),
    }
)


def get_negotiator(protocol: Union[ProtocolVariant, str]) -> Negotiator:
    """
    Look up the negotiator for a protocol identifier.

    Raises:
        ConfigurationError: if the identifier is not supported
    """
    try:
        return NEGOTIATORS[ProtocolVariant(protocol)]
    except ValueError:
        raise ConfigurationError(f"unsupported StartTLS protocol {protocol}") from None


def create_tls_context() -> ssl.SSLContext:
    """
    TLS client context used for every check.

    Only the certificate's names and dates matter to the probe, so trust
    verification is off and the oldest protocol version the local TLS library
    still offers is accepted.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.minimum_version = ssl.TLSVersion.MINIMUM_SUPPORTED
    return context


def handshake(
    sock: socket.socket,
    endpoint: Endpoint,
    deadline: Deadline,
    context: Optional[ssl.SSLContext] = None,
) -> ssl.SSLSocket:
    """
    Run the TLS handshake over an already negotiated socket.

    Raises:
        HandshakeError: if TLS negotiation fails or the deadline expires
    """
    if context is None:
        context = create_tls_context()
    try:
        tls_sock = context.wrap_socket(
            sock, server_hostname=endpoint.host, do_handshake_on_connect=False
        )
    except (ssl.SSLError, OSError, ValueError) as e:
        # ValueError covers host names the IDNA codec refuses
        raise HandshakeError(
            f"TLS handshake with {endpoint} failed: {e}", host=endpoint.host, port=endpoint.port
        ) from e

    try:
        _drive_handshake(tls_sock, deadline)
    except (ssl.SSLError, OSError) as e:
        tls_sock.close()
        raise HandshakeError(
            f"TLS handshake with {endpoint} failed: {e}", host=endpoint.host, port=endpoint.port
        ) from e
    log_negotiation_step(logger, str(endpoint), "tls", "handshake", tls_sock.version())
    return tls_sock


def _drive_handshake(tls_sock: ssl.SSLSocket, deadline: Deadline) -> None:
    """Step a non-blocking handshake, waiting at most until the deadline for each step."""
    tls_sock.setblocking(False)
    while True:
        try:
            tls_sock.do_handshake()
            return
        except ssl.SSLWantReadError:
            ready = select.select([tls_sock], [], [], deadline.remaining())[0]
        except ssl.SSLWantWriteError:
            ready = select.select([], [tls_sock], [], deadline.remaining())[1]
        if not ready:
            raise TimeoutError(f"timed out after {deadline.timeout:g}s")
