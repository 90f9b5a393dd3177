from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class StreamHealthStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    ENDED = "ended"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class StreamHealth(BaseModel):
    status: StreamHealthStatus
    updated_at: datetime
