"""Producer ingest over WebSocket.

On connect the server issues a stream session and sends its id to the
producer. Binary frames are media bytes for the transcoder; a failed ingest
is reported once with a `stream_error` event.
"""

import asyncio

from fastapi import APIRouter, Depends, WebSocket, status
from loguru import logger
from starlette.websockets import WebSocketDisconnect, WebSocketState

from sigcast.api.dependency import (
    get_ingest_settings,
    get_pipeline_tracker,
    get_session_registry,
    get_stream_health,
    get_transcoder,
)
from sigcast.domain.ingest.health import StreamHealthBoard
from sigcast.domain.ingest.pipeline import IngestPipeline, IngestPipelineTracker, IngestSettings
from sigcast.domain.ingest.transcoder import Transcoder
from sigcast.domain.session.registry import SessionRegistry
from sigcast.schemas import StreamErrorEvent, StreamHealthStatus, StreamKeyEvent

router = APIRouter()


@router.websocket("/ingest")
async def ingest(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_session_registry),
    transcoder: Transcoder = Depends(get_transcoder),
    settings: IngestSettings = Depends(get_ingest_settings),
    health: StreamHealthBoard = Depends(get_stream_health),
    tracker: IngestPipelineTracker = Depends(get_pipeline_tracker),
):
    await websocket.accept()

    try:
        session = await asyncio.to_thread(registry.issue)
    except Exception as exc:
        logger.error("Failed to issue stream session: {}", exc)
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Unable to create stream session")
        return

    session_id = session.session_id
    health.update(session_id, StreamHealthStatus.WAITING)
    await websocket.send_text(
        StreamKeyEvent(session_id=session_id, expires_at=session.expires_at).model_dump_json()
    )

    async def report_failure(reason: str) -> None:
        if websocket.client_state is not WebSocketState.CONNECTED:
            return
        try:
            await websocket.send_text(StreamErrorEvent(reason=reason).model_dump_json())
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug("Stream {}: producer gone before error could be sent: {}", session_id, exc)

    pipeline = IngestPipeline(
        session_id=session_id,
        transcoder=transcoder,
        settings=settings,
        on_failure=report_failure,
        health=health,
    )
    tracker.add(pipeline)
    logger.info("Producer connected for stream {}", session_id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            data = message.get("bytes")
            if data is None:
                logger.warning("Stream {}: ignoring text frame from producer", session_id)
                continue

            await pipeline.on_data(data)
    except WebSocketDisconnect:
        pass
    finally:
        await pipeline.on_disconnect()
        tracker.discard(pipeline)
        logger.info("Producer disconnected from stream {}", session_id)
