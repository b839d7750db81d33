from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ColoState(BaseModel):
    """
    Last known colocation for one target and when it was last confirmed.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    colo: Optional[str] = None
    confirmed_at: datetime


class ChangeEvent(BaseModel):
    """
    A transition between two consecutive observed colocations of one target.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    previous_colo: str
    new_colo: str
    timestamp: datetime
    rtt_ms: Optional[float] = None
