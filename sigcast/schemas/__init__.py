"""Data schemas shared by the domain and API layers."""

from .ingest_state import IngestState
from .messages import (
    SEGMENT_HASH_HEADER,
    SEGMENT_SIGNATURE_HEADER,
    SegmentHeaders,
    StreamErrorEvent,
    StreamKeyEvent,
)
from .session import StreamSession
from .stream_health import StreamHealth, StreamHealthStatus

__all__ = [
    "SEGMENT_HASH_HEADER",
    "SEGMENT_SIGNATURE_HEADER",
    "IngestState",
    "SegmentHeaders",
    "StreamErrorEvent",
    "StreamHealth",
    "StreamHealthStatus",
    "StreamKeyEvent",
    "StreamSession",
]
