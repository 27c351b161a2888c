"""
Certificate expiry evaluation.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from tls_cert_probe.models import Thresholds
from tls_cert_probe.plugin import Status

DAY = timedelta(days=1)

# Added before dividing so that any partial day counts as a whole one
_ROUND_UP = timedelta(hours=23, minutes=59, seconds=59)


@dataclass(frozen=True)
class ExpiryVerdict:
    state: Status
    days_remaining: int
    threshold_applied: Optional[int]
    message: str


def days_remaining(not_after: datetime, now: datetime) -> int:
    """
    Whole days of validity left, rounding partial days up.

    A certificate expiring in one second or in exactly 24 hours has one day
    left; an expired one has zero or fewer. The quotient is truncated toward
    zero.
    """
    shifted = not_after - now + _ROUND_UP
    days = abs(shifted) // DAY
    return days if shifted >= timedelta(0) else -days


def evaluate_expiry(not_after: datetime, now: datetime, thresholds: Thresholds) -> ExpiryVerdict:
    """
    Classify the remaining validity against the thresholds.

    Expiry always wins, then the critical threshold, then the warning one.
    """
    days = days_remaining(not_after, now)
    if days <= 0:
        return ExpiryVerdict(Status.CRITICAL, days, None, "certificate expired")

    critical = thresholds.critical_days
    warning = thresholds.warning_days
    if critical is not None and days <= critical:
        state, threshold = Status.CRITICAL, critical
    elif warning is not None and days <= warning:
        state, threshold = Status.WARNING, warning
    else:
        state, threshold = Status.OK, None

    message = f"certificate will expire in {days} days"
    if threshold is not None:
        message += f" (<= {threshold})"
    return ExpiryVerdict(state, days, threshold, message)
