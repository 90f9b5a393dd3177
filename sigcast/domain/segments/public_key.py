from sigcast.domain.session.registry import SessionRegistry
from sigcast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class PublicKeyEndpoint:
    """Trust anchor for viewers: the DER public key of a live session."""

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    def get(self, session_id: str) -> bytes:
        public_key = self._registry.public_key_of(session_id)
        if public_key is None:
            raise AppError(
                errcode=AppErrorCode.E_SESSION_NOT_FOUND,
                errmesg="Stream not found or expired",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        return public_key
