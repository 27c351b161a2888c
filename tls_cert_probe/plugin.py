"""
Monitoring plugin result accumulation and rendering.

The rendered text follows the Nagios plugin conventions: a status line with
optional performance data, then any number of detail lines. The numeric
value of the final status is the process exit code.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterable, List

from tls_cert_probe.perfdata import PerfData


class Status(IntEnum):
    """Plugin statuses; the value is the exit code."""

    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    Status.OK: "OK",
    Status.WARNING: "WARNING",
    Status.CRITICAL: "ERROR",
    Status.UNKNOWN: "UNKNOWN",
}


@dataclass(frozen=True)
class CheckResult:
    """Final plugin output and the exit code to terminate with."""

    status: Status
    output: str

    @property
    def exit_code(self) -> int:
        return int(self.status)


class Plugin:
    """Accumulates the state, text and performance data of one check."""

    def __init__(self, name: str):
        self.name = name
        self.status = Status.UNKNOWN
        self.message = "no status set"
        self.lines: List[str] = []
        self.perfdata: Dict[str, PerfData] = {}

    def set_state(self, status: Status, message: str) -> None:
        self.status = status
        self.message = message

    def add_line(self, line: str) -> None:
        self.lines.append(line)

    def add_lines(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.add_line(line)

    def add_perfdata(self, data: PerfData) -> None:
        """
        Add a performance data record.

        Raises:
            ValueError: if a record with the same label was already added
        """
        if data.label in self.perfdata:
            raise ValueError(f"duplicate performance data {data.label}")
        self.perfdata[data.label] = data

    def render(self) -> str:
        output = f"{self.name} {self.status.label}: {self.message}"
        if self.perfdata:
            output += " | " + ", ".join(str(data) for data in self.perfdata.values())
        for line in self.lines:
            output += "\n" + line
        return output

    def finish(self) -> CheckResult:
        return CheckResult(status=self.status, output=self.render())
