from enum import Enum
from typing import Optional

from config.settings import ReportingSettings


class Severity(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    NO_DATA = "no_data"


def classify_uptime(value: Optional[float], settings: ReportingSettings) -> Severity:
    if value is None:
        return Severity.NO_DATA
    if value < settings.critical_uptime_threshold_percent:
        return Severity.CRITICAL
    if value < settings.uptime_threshold_percent:
        return Severity.WARNING
    return Severity.NORMAL


def classify_mean_rtt(value: Optional[float], settings: ReportingSettings) -> Severity:
    if value is None:
        return Severity.NO_DATA
    if value > settings.rtt_threshold_ms:
        return Severity.CRITICAL
    return Severity.NORMAL


def classify_p95_rtt(value: Optional[float], settings: ReportingSettings) -> Severity:
    if value is None:
        return Severity.NO_DATA
    if value > settings.p95_rtt_threshold_ms:
        return Severity.CRITICAL
    return Severity.NORMAL


def classify_change_rtt(value: Optional[float]) -> str:
    """
    Badge colour (3-digit hex) for the RTT shown in a colo change note.
    """
    if value is None:
        return "999"
    if value < 300:
        return "3a3"
    if value < 500:
        return "991"
    if value < 1000:
        return "c52"
    return "b22"
