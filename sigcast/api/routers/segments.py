"""Viewer access to transcoded segments.

`.m4s` segments are signed per request; the playlist and init segment are
served unsigned so players can read them directly.
"""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import FileResponse

from sigcast.api.dependency import get_segment_gateway
from sigcast.domain.segments.gateway import SegmentGateway, is_signed_segment

# Catch-all two-segment path; must register after every more specific route
ROUTER_ORDER = 100

router = APIRouter()


@router.get("/{session_id}/{chunk_file}")
async def get_segment(
    session_id: str,
    chunk_file: str,
    gateway: SegmentGateway = Depends(get_segment_gateway),
) -> Response:
    """Serve one file of a stream.

    Raises:
        403: Session unknown or expired (signed segments)
        404: File absent or outside the session directory
        500: Segment could not be read or signed
    """
    if not is_signed_segment(chunk_file):
        path, media_type = gateway.resolve_asset(session_id, chunk_file)
        return FileResponse(
            path,
            media_type=media_type,
            headers={"Access-Control-Allow-Origin": "*", "Cache-Control": "no-cache"},
        )

    segment = await gateway.serve(session_id, chunk_file)
    return Response(
        content=segment.body,
        media_type=segment.media_type,
        headers=segment.headers.as_headers(),
    )
