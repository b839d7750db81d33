from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class ReportWindow(BaseModel):
    """
    Half-open time window [since, until) in UTC.
    """

    model_config = ConfigDict(frozen=True)

    since: datetime
    until: datetime

    @field_validator("since", "until")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_order(self):
        if self.since > self.until:
            raise ValueError(
                f"since ({self.since.isoformat()}) must be earlier than or equal to "
                f"until ({self.until.isoformat()})"
            )
        return self

    def contains(self, timestamp: datetime) -> bool:
        return self.since <= timestamp < self.until


class RttStats(BaseModel):
    """
    RTT aggregate over successful samples, in milliseconds.
    """

    min: float
    max: float
    mean: float
    median: float
    p95: float


class ColoTransition(BaseModel):
    timestamp: datetime
    previous_colo: str
    new_colo: str


class TargetStats(BaseModel):
    """
    Per-target aggregate. uptime_percent and rtt are None when there is no data.
    """

    url: str
    count: int
    success_count: int
    uptime_percent: Optional[float] = None
    rtt: Optional[RttStats] = None
    transitions: List[ColoTransition] = []
    unique_colos: List[str] = []
    most_frequent_colo: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return self.count > 0


class Report(BaseModel):
    window: ReportWindow
    configured_targets: int
    reported_targets: int
    overall_uptime_percent: Optional[float] = None
    target_stats: List[TargetStats] = []
