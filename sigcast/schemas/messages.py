"""Wire schemas for producer events and segment response headers."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SEGMENT_HASH_HEADER = "X-Segment-Hash"
SEGMENT_SIGNATURE_HEADER = "X-Segment-Signature"


class StreamKeyEvent(BaseModel):
    """Sent to the producer right after its connection is accepted."""

    event: Literal["stream_key"] = "stream_key"
    session_id: str
    expires_at: datetime


class StreamErrorEvent(BaseModel):
    """Sent to the producer once when its ingest fails."""

    event: Literal["stream_error"] = "stream_error"
    reason: str


class SegmentHeaders(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    segment_hash: str = Field(..., alias=SEGMENT_HASH_HEADER, pattern=r"^[0-9a-f]{64}$")
    segment_signature: str = Field(..., alias=SEGMENT_SIGNATURE_HEADER, min_length=1)
    allow_origin: str = Field("*", alias="Access-Control-Allow-Origin")
    expose_headers: str = Field(
        f"{SEGMENT_HASH_HEADER}, {SEGMENT_SIGNATURE_HEADER}",
        alias="Access-Control-Expose-Headers",
    )

    def as_headers(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)
