"""
Host name validation against a certificate's SAN list or, failing that, its CN.
"""

from dataclasses import dataclass
from typing import ClassVar, Iterable, List, Tuple, Union

from tls_cert_probe.models import AcquiredCertificate
from tls_cert_probe.plugin import Status


@dataclass(frozen=True)
class AllNamesMatched:
    """Every requested name is listed in the SAN extension."""

    passed = True
    status = Status.OK
    message = "all names found in SAN domain names"
    findings: ClassVar[Tuple[str, ...]] = ()


@dataclass(frozen=True)
class SanMismatch:
    """Some requested names are absent from the SAN extension."""

    missing_names: Tuple[str, ...]

    passed = False
    status = Status.CRITICAL
    message = "names missing from SAN domain names"

    @property
    def findings(self) -> Tuple[str, ...]:
        return tuple(f"missing DNS name {name} in certificate" for name in self.missing_names)


@dataclass(frozen=True)
class CnFallbackUsed:
    """No SAN extension, but the subject CN is the requested host."""

    passed = True
    status = Status.OK
    message = "certificate CN matches host name"
    findings: ClassVar[Tuple[str, ...]] = ()


@dataclass(frozen=True)
class CnMismatch:
    """No SAN extension and the subject CN is some other host."""

    passed = False
    status = Status.CRITICAL
    message = "incorrect certificate CN"
    findings: ClassVar[Tuple[str, ...]] = ()


@dataclass(frozen=True)
class SanAbsentAndFallbackDisallowed:
    """No SAN extension, and CN fallback is either disabled or insufficient."""

    passed = False
    status = Status.WARNING
    message = "certificate doesn't have SAN domain names"
    findings: ClassVar[Tuple[str, ...]] = ()


NameCheckOutcome = Union[
    AllNamesMatched, SanMismatch, CnFallbackUsed, CnMismatch, SanAbsentAndFallbackDisallowed
]


def check_names(
    certificate: AcquiredCertificate,
    hostname: str,
    additional_names: Iterable[str] = (),
    allow_cn_fallback: bool = False,
) -> NameCheckOutcome:
    """
    Check that the certificate covers the host name and any additional names.

    With a SAN extension, every name must appear in it (case-insensitive);
    all missing names are collected before returning. Without one, the CN is
    only accepted when the fallback is allowed and no additional names were
    requested, since those cannot be satisfied by a single CN.

    Args:
        certificate: Certificate presented by the server
        hostname: Host name that was connected to
        additional_names: Other names the certificate must provide
        allow_cn_fallback: Accept a SAN-less certificate whose CN matches

    Returns:
        The outcome of the check
    """
    hostname = hostname.lower()
    extra: List[str] = [name.lower() for name in additional_names]

    if not certificate.subject_alternative_names:
        if not allow_cn_fallback or extra:
            return SanAbsentAndFallbackDisallowed()
        if not certificate.subject.lower().startswith(f"cn={hostname},"):
            return CnMismatch()
        return CnFallbackUsed()

    san = {name.lower() for name in certificate.subject_alternative_names}
    missing: List[str] = []
    for name in [hostname, *extra]:
        if name not in san and name not in missing:
            missing.append(name)
    if missing:
        return SanMismatch(missing_names=tuple(missing))
    return AllNamesMatched()
