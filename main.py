#!/usr/bin/env python3
"""
TLS Certificate Probe - Monitoring plugin entry point

Prints the plugin output on standard output and exits with the status code
expected by the monitoring supervisor (0 OK, 1 WARNING, 2 CRITICAL,
3 UNKNOWN).
"""

import sys
from pathlib import Path
from typing import List, Optional

import click

from tls_cert_probe import __version__
from tls_cert_probe.check import CHECK_NAME, run_check
from tls_cert_probe.models import ProtocolVariant
from tls_cert_probe.plugin import CheckResult, Plugin, Status


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--hostname", "-H", help="Host name to connect to.")
@click.option("--port", "-P", help="Port to connect to.")
@click.option(
    "--warning", "-W", help="Validity threshold below which a warning state is issued, in days."
)
@click.option(
    "--critical", "-C", help="Validity threshold below which a critical state is issued, in days."
)
@click.option(
    "--ignore-cn-only",
    is_flag=True,
    help="Do not issue warnings regarding certificates that do not use SANs at all.",
)
@click.option(
    "--additional-names",
    "-a",
    help="A comma-separated list of names that the certificate should also provide.",
)
@click.option(
    "--start-tls",
    "-s",
    help="Protocol to use before requesting a switch to TLS. "
    f"Supported protocols: {ProtocolVariant.identifiers()}.",
)
@click.option("--timeout", "-t", help="Overall connection deadline, in seconds (default 30).")
@click.option(
    "--config",
    "-f",
    type=click.Path(path_type=Path),
    help="Path to a YAML file providing default values for the options.",
)
@click.option("--log-level", help="Log level for messages written to standard error.")
@click.option("--log-file", help="Also write JSON log records to this file.")
@click.option("--version", "-v", is_flag=True, help="Show version information")
def cli(
    hostname: Optional[str],
    port: Optional[str],
    warning: Optional[str],
    critical: Optional[str],
    ignore_cn_only: bool,
    additional_names: Optional[str],
    start_tls: Optional[str],
    timeout: Optional[str],
    config: Optional[Path],
    log_level: Optional[str],
    log_file: Optional[str],
    version: bool,
) -> Optional[CheckResult]:
    """Check the names and expiry date of a server's TLS certificate."""
    if version:
        click.echo(f"TLS Certificate Probe v{__version__}")
        return None

    return run_check(
        str(config) if config else None,
        hostname=hostname,
        port=port,
        warning=warning,
        critical=critical,
        ignore_cn_only=ignore_cn_only or None,
        additional_names=additional_names,
        start_tls=start_tls,
        timeout=timeout,
        log_level=log_level,
        log_file=log_file,
    )


def _unknown(message: str) -> CheckResult:
    plugin = Plugin(CHECK_NAME)
    plugin.set_state(Status.UNKNOWN, message)
    return plugin.finish()


def main(argv: Optional[List[str]] = None) -> None:
    """Run the plugin and terminate the process with its status code."""
    try:
        result = cli.main(args=argv, prog_name="check-ssl-certificate", standalone_mode=False)
    except click.ClickException as e:
        result = _unknown(e.format_message())
    except click.Abort:
        result = _unknown("interrupted")

    if not isinstance(result, CheckResult):
        # --help or --version
        sys.exit(result or 0)

    click.echo(result.output)
    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
