"""
Data model shared by the certificate probe stages.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.x509.oid import NameOID


class ProtocolVariant(str, Enum):
    """Supported ways of reaching the TLS handshake."""

    DIRECT_TLS = ""
    SMTP = "smtp"
    SIEVE = "sieve"

    @classmethod
    def identifiers(cls) -> str:
        """Comma-separated list of the accepted identifiers, for help texts."""
        return ", ".join(repr(variant.value) for variant in cls)


@dataclass(frozen=True)
class Endpoint:
    """Host and TCP port of the monitored service."""

    host: str
    port: int

    @property
    def address(self) -> Tuple[str, int]:
        return (self.host, self.port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Thresholds:
    """Remaining-validity thresholds, in days."""

    warning_days: Optional[int] = None
    critical_days: Optional[int] = None


# Well-known subject attributes, in the order they are rendered
SUBJECT_ATTRIBUTE_ORDER = (
    (NameOID.SERIAL_NUMBER, "SERIALNUMBER"),
    (NameOID.COMMON_NAME, "CN"),
    (NameOID.ORGANIZATIONAL_UNIT_NAME, "OU"),
    (NameOID.ORGANIZATION_NAME, "O"),
    (NameOID.POSTAL_CODE, "POSTALCODE"),
    (NameOID.STREET_ADDRESS, "STREET"),
    (NameOID.LOCALITY_NAME, "L"),
    (NameOID.STATE_OR_PROVINCE_NAME, "ST"),
    (NameOID.COUNTRY_NAME, "C"),
)

_SPECIAL_CHARACTERS = ',+"\\<>;'


def _escape_value(value: str) -> str:
    last = len(value) - 1
    escaped = []
    for i, char in enumerate(value):
        if (
            char in _SPECIAL_CHARACTERS
            or (i == 0 and char in "# ")
            or (i == last and char == " ")
        ):
            escaped.append("\\")
        escaped.append(char)
    return "".join(escaped)


def _attribute_value(attribute: x509.NameAttribute) -> str:
    value = attribute.value
    return value if isinstance(value, str) else value.decode("utf-8", errors="replace")


def render_subject(name: x509.Name) -> str:
    """
    Render a distinguished name in a fixed attribute order.

    Well-known attributes come first, in ``SUBJECT_ATTRIBUTE_ORDER``, with
    repeated attributes joined by ``+``. Any other attribute, such as
    emailAddress, follows under its dotted OID. The result does not depend on
    the order in which the issuer encoded the attributes.
    """
    parts: List[str] = []
    for oid, key in SUBJECT_ATTRIBUTE_ORDER:
        values = [_attribute_value(a) for a in name.get_attributes_for_oid(oid)]
        if values:
            parts.append("+".join(f"{key}={_escape_value(v)}" for v in values))

    known = {oid for oid, _ in SUBJECT_ATTRIBUTE_ORDER}
    others = [attribute for attribute in name if attribute.oid not in known]
    for attribute in reversed(others):
        parts.append(f"{attribute.oid.dotted_string}={_escape_value(_attribute_value(attribute))}")
    return ",".join(parts)


@dataclass(frozen=True)
class AcquiredCertificate:
    """
    The parts of the peer's leaf certificate that the checks look at.

    ``subject`` is rendered by ``render_subject``, so a typical server
    certificate reads ``CN=host.example,O=Org,C=FR`` whatever the encoded
    attribute order.
    """

    subject: str
    common_name: str
    subject_alternative_names: Tuple[str, ...]
    not_after: datetime

    @classmethod
    def from_x509(cls, cert: x509.Certificate) -> "AcquiredCertificate":
        """Build from a parsed certificate, keeping only DNS SAN entries."""
        cn_attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        common_name = ""
        if cn_attrs:
            value = cn_attrs[0].value
            common_name = value if isinstance(value, str) else value.decode("utf-8")

        try:
            san_ext = cert.extensions.get_extension_for_oid(
                x509.ExtensionOID.SUBJECT_ALTERNATIVE_NAME
            )
            san = san_ext.value
            dns_names = tuple(san.get_values_for_type(x509.DNSName))  # type: ignore[attr-defined]
        except x509.ExtensionNotFound:
            dns_names = ()

        return cls(
            subject=render_subject(cert.subject),
            common_name=common_name,
            subject_alternative_names=dns_names,
            not_after=cert.not_valid_after_utc,
        )
