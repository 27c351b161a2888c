"""
TLS Certificate Probe

A monitoring plugin that fetches the certificate presented by a TLS, SMTP or
ManageSieve service and checks its host names and remaining validity.
"""

__version__ = "1.0.0"
__author__ = "TLS Certificate Probe Team"
__description__ = "Monitoring plugin checking TLS certificate names and expiry"

from tls_cert_probe.check import CertificateCheck, run_check
from tls_cert_probe.config import CheckConfig, load_config
from tls_cert_probe.plugin import CheckResult, Status

__all__ = [
    "CertificateCheck",
    "CheckConfig",
    "CheckResult",
    "Status",
    "load_config",
    "run_check",
]
