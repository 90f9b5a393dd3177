"""Public key lookup for viewers verifying segment signatures."""

import base64

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from sigcast.api.dependency import get_public_key_endpoint
from sigcast.domain.segments.public_key import PublicKeyEndpoint

router = APIRouter()


@router.get("/publickey/{session_id}", response_class=PlainTextResponse)
async def get_public_key(
    session_id: str,
    endpoint: PublicKeyEndpoint = Depends(get_public_key_endpoint),
) -> PlainTextResponse:
    """Base64 of the session's DER SubjectPublicKeyInfo.

    Raises:
        404: Session unknown or expired
    """
    der = endpoint.get(session_id)
    return PlainTextResponse(
        base64.b64encode(der).decode("ascii"),
        headers={"Access-Control-Allow-Origin": "*"},
    )
