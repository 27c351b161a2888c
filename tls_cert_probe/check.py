"""
The certificate check pipeline.

connect → negotiate → handshake → extract → validate names → evaluate expiry
→ report. Every path ends with exactly one final status.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from tls_cert_probe.config import CheckConfig, load_config
from tls_cert_probe.errors import ConfigurationError, ProbeError
from tls_cert_probe.expiry import evaluate_expiry
from tls_cert_probe.extractor import fetch_certificate
from tls_cert_probe.logger import get_logger, log_check_error, setup_logging
from tls_cert_probe.models import AcquiredCertificate, Endpoint, ProtocolVariant
from tls_cert_probe.names import check_names
from tls_cert_probe.perfdata import PerfData, PerfDataRange, UnitOfMeasurement
from tls_cert_probe.plugin import CheckResult, Plugin, Status

CHECK_NAME = "Certificate check"

Fetcher = Callable[[Endpoint, ProtocolVariant, float], AcquiredCertificate]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateCheck:
    """Runs one certificate check for an already validated configuration."""

    def __init__(
        self,
        config: CheckConfig,
        fetcher: Optional[Fetcher] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.fetcher = fetcher or fetch_certificate
        self.clock = clock
        self.logger = get_logger("check")

    def run(self) -> CheckResult:
        """Run the check and return the plugin output; never raises for check failures."""
        plugin = Plugin(CHECK_NAME)
        endpoint = self.config.endpoint

        try:
            certificate = self.fetcher(endpoint, self.config.protocol, self.config.timeout)
        except ProbeError as e:
            log_check_error(self.logger, str(endpoint), e)
            plugin.set_state(Status.UNKNOWN, str(e))
            return plugin.finish()

        outcome = check_names(
            certificate,
            self.config.hostname,
            self.config.additional_names,
            allow_cn_fallback=self.config.ignore_cn_only,
        )
        plugin.add_lines(outcome.findings)
        if not outcome.passed:
            self.logger.info(f"Name check failed for {endpoint}: {outcome.message}")
            plugin.set_state(outcome.status, outcome.message)
            return plugin.finish()

        verdict = evaluate_expiry(certificate.not_after, self.clock(), self.config.thresholds)
        self.logger.info(
            f"{endpoint}: {verdict.message}",
            extra={"endpoint": str(endpoint), "days_remaining": verdict.days_remaining},
        )
        plugin.set_state(verdict.state, verdict.message)
        plugin.add_perfdata(self._validity_perfdata(verdict.days_remaining))
        return plugin.finish()

    def _validity_perfdata(self, days: int) -> PerfData:
        data = PerfData("validity", UnitOfMeasurement.NONE, str(days))
        if self.config.warning is not None:
            data.set_warn(PerfDataRange.at_most(str(self.config.warning)))
        if self.config.critical is not None:
            data.set_crit(PerfDataRange.at_most(str(self.config.critical)))
        return data


def run_check(config_path: Optional[str] = None, **overrides: Any) -> CheckResult:
    """
    Load the configuration and run the check.

    Configuration problems are reported as UNKNOWN before any connection is
    attempted.
    """
    try:
        config = load_config(config_path, **overrides)
    except ConfigurationError as e:
        plugin = Plugin(CHECK_NAME)
        plugin.set_state(Status.UNKNOWN, str(e))
        return plugin.finish()

    setup_logging(config)
    return CertificateCheck(config).run()
