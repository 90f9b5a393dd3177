from fastapi import APIRouter, Depends

from sigcast.api.dependency import get_stream_health
from sigcast.api.schemas.base import ApiOut
from sigcast.api.schemas.stream import StreamHealthOut
from sigcast.domain.ingest.health import StreamHealthBoard
from sigcast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

router = APIRouter(prefix="/streams")


@router.get("/{session_id}/health")
async def get_stream_health_status(
    session_id: str,
    health: StreamHealthBoard = Depends(get_stream_health),
) -> ApiOut[StreamHealthOut]:
    """Last known ingest status of a stream."""
    entry = health.get(session_id)
    if entry is None:
        raise AppError(
            errcode=AppErrorCode.E_STREAM_NOT_FOUND,
            errmesg=f"Stream not found: {session_id}",
            status_code=HttpStatusCode.NOT_FOUND,
        )

    return ApiOut[StreamHealthOut](
        results=StreamHealthOut(
            session_id=session_id,
            status=entry.status,
            updated_at=entry.updated_at,
        )
    )
