"""
Performance data records for monitoring plugin output.

Values and range bounds are kept as strings so they are rendered exactly as
given; they must be plain decimal literals. Passing anything else is a bug in
the calling code and raises ``ValueError``.
"""

import re
from enum import Enum
from typing import Optional

_VALUE_PATTERN = r"-?(0(\.\d*)?|[1-9]\d*(\.\d*)?|\.\d+)"
_VALUE_CHECK = re.compile(rf"^{_VALUE_PATTERN}$")
_RANGE_MIN_CHECK = re.compile(rf"^(?:{_VALUE_PATTERN}|~)$")


class UnitOfMeasurement(Enum):
    NONE = ""
    SECONDS = "s"
    PERCENT = "%"
    BYTES = "B"
    KILOBYTES = "KB"
    MEGABYTES = "MB"
    GIGABYTES = "GB"
    TERABYTES = "TB"
    COUNTER = "c"


def _check_value(value: str, what: str) -> str:
    if not _VALUE_CHECK.match(value):
        raise ValueError(f"invalid performance data {what}: {value!r}")
    return value


class PerfDataRange:
    """Warning or critical range, in the ``[@]start:end`` notation."""

    def __init__(self, start: str, end: str, inside: bool = False):
        if not _RANGE_MIN_CHECK.match(start):
            raise ValueError(f"invalid performance data range minimum: {start!r}")
        self.start = start
        self.end = _check_value(end, "range maximum")
        self.inside = inside

    @classmethod
    def at_most(cls, maximum: str) -> "PerfDataRange":
        """Range from negative infinity up to ``maximum``."""
        return cls("~", maximum)

    @classmethod
    def min_max(cls, minimum: str, maximum: str) -> "PerfDataRange":
        return cls(minimum, maximum)

    def invert(self) -> "PerfDataRange":
        """Alert when the value is inside the range instead of outside."""
        self.inside = True
        return self

    def __str__(self) -> str:
        prefix = "@" if self.inside else ""
        start = "" if self.start == "0" else self.start
        return f"{prefix}{start}:{self.end}"


class PerfData:
    """A labelled value with optional warning/critical ranges and min/max bounds."""

    def __init__(
        self,
        label: str,
        units: UnitOfMeasurement = UnitOfMeasurement.NONE,
        value: Optional[str] = None,
    ):
        self.label = label
        self.units = units
        self.value = "U" if value is None or value == "" else _check_value(value, "value")
        self.warn: Optional[PerfDataRange] = None
        self.crit: Optional[PerfDataRange] = None
        self.min: Optional[str] = None
        self.max: Optional[str] = None

    def set_warn(self, value_range: PerfDataRange) -> None:
        self.warn = value_range

    def set_crit(self, value_range: PerfDataRange) -> None:
        self.crit = value_range

    def set_min(self, minimum: str) -> None:
        self.min = _check_value(minimum, "minimum")

    def set_max(self, maximum: str) -> None:
        self.max = _check_value(maximum, "maximum")

    def __str__(self) -> str:
        label = self.label.replace("'", "''")
        if any(c in self.label for c in " '=\""):
            label = f"'{label}'"
        fields = [
            f"{label}={self.value}{self.units.value}",
            str(self.warn) if self.warn else "",
            str(self.crit) if self.crit else "",
            self.min or "",
            self.max or "",
        ]
        return ";".join(fields)
