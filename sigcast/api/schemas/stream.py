from datetime import datetime

from pydantic import BaseModel, Field

from sigcast.schemas import StreamHealthStatus


class StreamHealthOut(BaseModel):
    session_id: str = Field(..., description="Stream session id")
    status: StreamHealthStatus
    updated_at: datetime
