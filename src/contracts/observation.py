from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class OutcomeKind(str, Enum):
    """
    Closed set of probe outcomes.
    """

    SUCCESS = "success"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    HTTP_ERROR = "http_error"


class Target(BaseModel):
    """
    A monitored endpoint. The configured URL doubles as the target identifier.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    timeout_seconds: Optional[float] = None
    user_agent: Optional[str] = None

    @property
    def id(self) -> str:
        return self.url


class Observation(BaseModel):
    """
    One probe result as written to the observation log.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    url: str
    outcome: OutcomeKind
    status_code: Optional[int] = None
    rtt_ms: Optional[float] = None
    colo: Optional[str] = None
    error: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_outcome_fields(self):
        is_success = self.outcome is OutcomeKind.SUCCESS
        if is_success != (self.rtt_ms is not None):
            raise ValueError("rtt_ms must be present exactly when outcome is success")
        if self.colo is not None and not is_success:
            raise ValueError("colo is only allowed on a successful observation")
        if (self.outcome is OutcomeKind.HTTP_ERROR) != (self.status_code is not None):
            raise ValueError("status_code must be present exactly when outcome is http_error")
        return self

    @property
    def is_success(self) -> bool:
        return self.outcome is OutcomeKind.SUCCESS

    @classmethod
    def success(cls, url: str, rtt_ms: float, colo: Optional[str] = None, timestamp=None):
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            url=url,
            outcome=OutcomeKind.SUCCESS,
            rtt_ms=rtt_ms,
            colo=colo,
        )

    @classmethod
    def failure(
        cls,
        url: str,
        outcome: OutcomeKind,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
        timestamp=None,
    ):
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            url=url,
            outcome=outcome,
            status_code=status_code,
            error=error,
        )

    def __repr__(self):
        return (
            f"Observation(url={self.url}, outcome={self.outcome.value}, "
            f"status_code={self.status_code}, rtt_ms={self.rtt_ms}, colo={self.colo})"
        )
