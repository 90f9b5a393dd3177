"""Accessors for the per-application services held on `app.state`.

`HTTPConnection` works for both HTTP and WebSocket routes.
"""

from starlette.requests import HTTPConnection

from sigcast.domain.ingest.health import StreamHealthBoard
from sigcast.domain.ingest.pipeline import IngestPipelineTracker, IngestSettings
from sigcast.domain.ingest.transcoder import Transcoder
from sigcast.domain.segments.gateway import SegmentGateway
from sigcast.domain.segments.public_key import PublicKeyEndpoint
from sigcast.domain.session.registry import SessionRegistry


def get_session_registry(conn: HTTPConnection) -> SessionRegistry:
    return conn.app.state.session_registry


def get_segment_gateway(conn: HTTPConnection) -> SegmentGateway:
    return conn.app.state.segment_gateway


def get_public_key_endpoint(conn: HTTPConnection) -> PublicKeyEndpoint:
    return conn.app.state.public_key_endpoint


def get_stream_health(conn: HTTPConnection) -> StreamHealthBoard:
    return conn.app.state.stream_health


def get_transcoder(conn: HTTPConnection) -> Transcoder:
    return conn.app.state.transcoder


def get_ingest_settings(conn: HTTPConnection) -> IngestSettings:
    return conn.app.state.ingest_settings


def get_pipeline_tracker(conn: HTTPConnection) -> IngestPipelineTracker:
    return conn.app.state.ingest_pipelines
