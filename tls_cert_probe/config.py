"""
Configuration management for the certificate probe.
"""

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from tls_cert_probe.errors import ConfigurationError
from tls_cert_probe.models import Endpoint, ProtocolVariant, Thresholds


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _as_whole_number(value: Any) -> int:
    """Convert to int, refusing booleans and fractional numbers."""
    if isinstance(value, bool):
        raise ValueError(f"not a whole number: {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"not a whole number: {value!r}")
    return int(value)


class CheckConfig(BaseModel):
    """Settings of a single certificate check."""

    # Target
    hostname: str = Field(default="", validate_default=True)
    port: int = Field(default=-1, validate_default=True)
    start_tls: str = Field(default="")

    # Thresholds, in days
    warning: Optional[int] = None
    critical: Optional[int] = None

    # Name checks
    ignore_cn_only: bool = Field(default=False)
    additional_names: List[str] = Field(default_factory=list)

    # Overall deadline for connect, STARTTLS preamble and handshake, in seconds
    timeout: float = Field(default=30.0)

    # Logging
    log_level: str = Field(default="WARNING")
    log_file: Optional[str] = None

    @field_validator("hostname", mode="before")
    @classmethod
    def validate_hostname(cls, v: Any) -> str:
        """Normalise the host name; it is compared case-insensitively."""
        hostname = str(v or "").strip().lower()
        if not hostname:
            raise ValueError("no hostname specified")
        return hostname

    @field_validator("port", mode="before")
    @classmethod
    def validate_port(cls, v: Any) -> int:
        """Ensure the port is an integer in the TCP range."""
        try:
            port = _as_whole_number(v)
        except (TypeError, ValueError):
            raise ValueError("invalid or missing port number") from None
        if port < 1 or port > 65535:
            raise ValueError("invalid or missing port number")
        return port

    @field_validator("warning", "critical", mode="before")
    @classmethod
    def validate_threshold(cls, v: Any, info: ValidationInfo) -> Optional[int]:
        """Thresholds are optional positive day counts."""
        if v is None or v == "":
            return None
        try:
            days = _as_whole_number(v)
        except (TypeError, ValueError):
            raise ValueError(f"invalid {info.field_name} threshold") from None
        if days <= 0:
            raise ValueError(f"invalid {info.field_name} threshold")
        return days

    @field_validator("additional_names", mode="before")
    @classmethod
    def validate_additional_names(cls, v: Any) -> List[str]:
        """Accept a comma-separated string or a list; drop empty entries."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return [str(name).strip().lower() for name in v if str(name).strip()]

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: Any) -> float:
        try:
            timeout = float(v)
        except (TypeError, ValueError):
            raise ValueError("invalid timeout") from None
        if timeout <= 0:
            raise ValueError("invalid timeout")
        return timeout

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_check(self) -> "CheckConfig":
        """Cross-field checks, in the order the plugin has always reported them."""
        if (
            self.warning is not None
            and self.critical is not None
            and self.warning <= self.critical
        ):
            raise ValueError("nonsensical thresholds")
        try:
            ProtocolVariant(self.start_tls)
        except ValueError:
            raise ValueError(f"unsupported StartTLS protocol {self.start_tls}") from None
        return self

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(host=self.hostname, port=self.port)

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds(warning_days=self.warning, critical_days=self.critical)

    @property
    def protocol(self) -> ProtocolVariant:
        return ProtocolVariant(self.start_tls)


def load_config(config_path: Optional[str] = None, **overrides: Any) -> CheckConfig:
    """
    Load the check configuration.

    Values are read from the YAML file (if any), then from ``CERT_PROBE_*``
    environment variables, then from ``overrides``; ``None`` overrides are
    ignored so unset command line flags do not mask file or environment
    values.

    Args:
        config_path: Path to a YAML configuration file
        **overrides: Explicit settings, usually from the command line

    Returns:
        CheckConfig object

    Raises:
        ConfigurationError: if the file cannot be read or a setting is invalid
    """
    config_data: Dict[str, Any] = {}

    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"configuration file not found: {config_path}")
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot read configuration file {config_path}: {e}") from e
        if not isinstance(config_data, dict):
            raise ConfigurationError(f"invalid configuration file {config_path}")

    config_data.update(_get_env_overrides())
    config_data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return CheckConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(_first_error_message(e)) from e


def _first_error_message(error: ValidationError) -> str:
    """Extract the message of the first validation error, without pydantic's decorations."""
    details = error.errors()[0]
    ctx_error = details.get("ctx", {}).get("error")
    if ctx_error is not None:
        return str(ctx_error)
    location = ".".join(str(part) for part in details.get("loc", ()))
    return f"{location}: {details.get('msg')}" if location else str(details.get("msg"))


def _get_env_overrides() -> dict:
    """Get configuration overrides from environment variables."""
    env_mapping: Dict[str, tuple[str, Callable[[str], Any]]] = {
        "CERT_PROBE_HOSTNAME": ("hostname", str),
        "CERT_PROBE_PORT": ("port", str),
        "CERT_PROBE_WARNING": ("warning", str),
        "CERT_PROBE_CRITICAL": ("critical", str),
        "CERT_PROBE_IGNORE_CN_ONLY": ("ignore_cn_only", _as_bool),
        "CERT_PROBE_ADDITIONAL_NAMES": ("additional_names", str),
        "CERT_PROBE_START_TLS": ("start_tls", str),
        "CERT_PROBE_TIMEOUT": ("timeout", str),
        "CERT_PROBE_LOG_LEVEL": ("log_level", str),
        "CERT_PROBE_LOG_FILE": ("log_file", str),
    }

    overrides = {}
    for env_var, (config_key, converter) in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[config_key] = converter(value)

    return overrides
