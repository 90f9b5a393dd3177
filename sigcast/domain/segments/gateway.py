"""Signed delivery of transcoded segments."""

import asyncio
import base64
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from sigcast.domain.crypto import signer
from sigcast.domain.session.registry import SessionRegistry
from sigcast.domain.utils.idgen import is_stream_id
from sigcast.schemas import SegmentHeaders
from sigcast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

SEGMENT_SUFFIX = ".m4s"
SEGMENT_MEDIA_TYPE = "video/iso.segment"

# Served as-is to viewers: the rolling playlist and the fMP4 init segment
ASSET_MEDIA_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".mp4": "video/mp4",
}


@dataclass(frozen=True)
class SignedSegment:
    body: bytes
    headers: SegmentHeaders
    media_type: str = SEGMENT_MEDIA_TYPE


def is_signed_segment(filename: str) -> bool:
    return filename.endswith(SEGMENT_SUFFIX)


class SegmentGateway:
    """Serves a session's segments with a digest and a signature by the session key.

    Requested names are resolved inside MEDIA_ROOT/<session_id>; anything that
    resolves outside that directory is rejected before the filesystem is read,
    so one session's trust never covers another session's files.
    """

    def __init__(self, registry: SessionRegistry, media_root: Path) -> None:
        self._registry = registry
        self._media_root = Path(media_root)

    @property
    def media_root(self) -> Path:
        return self._media_root

    def session_dir(self, session_id: str) -> Path:
        return self._media_root / session_id

    def resolve(self, session_id: str, filename: str) -> Path:
        """Resolve `filename` strictly within the session directory.

        Raises:
            AppError: E_SEGMENT_PATH_INVALID if the name escapes the directory
        """
        if not is_stream_id(session_id):
            raise AppError(
                errcode=AppErrorCode.E_SEGMENT_PATH_INVALID,
                errmesg="Invalid stream id",
                status_code=HttpStatusCode.NOT_FOUND,
            )

        session_dir = self.session_dir(session_id).resolve()
        try:
            candidate = (session_dir / filename).resolve()
        except (ValueError, OSError):
            # embedded null byte, name too long
            candidate = None

        if candidate is None or candidate.parent != session_dir:
            logger.warning("Rejected segment path outside session dir: {!r} for {}", filename, session_id)
            raise AppError(
                errcode=AppErrorCode.E_SEGMENT_PATH_INVALID,
                errmesg="Invalid segment path",
                status_code=HttpStatusCode.NOT_FOUND,
            )

        return candidate

    async def serve(self, session_id: str, chunk_file: str) -> SignedSegment:
        """Read, hash and sign one segment of a valid session.

        Raises:
            AppError: 404 E_SEGMENT_PATH_INVALID for names outside the session dir
            AppError: 403 E_SESSION_FORBIDDEN if the session is unknown or expired
            AppError: 404 E_SEGMENT_NOT_FOUND if the segment does not exist
            AppError: 500 E_SEGMENT_READ_FAILED on read or signing errors
        """
        path = self.resolve(session_id, chunk_file)

        session = self._registry.lookup(session_id)
        if session is None:
            raise AppError(
                errcode=AppErrorCode.E_SESSION_FORBIDDEN,
                errmesg="Stream key is invalid or expired",
                status_code=HttpStatusCode.FORBIDDEN,
            )

        try:
            body, segment_digest, signature = await asyncio.to_thread(
                _read_and_sign, path, session.key_pair.private_key
            )
        except FileNotFoundError:
            raise AppError(
                errcode=AppErrorCode.E_SEGMENT_NOT_FOUND,
                errmesg=f"Segment not found: {chunk_file}",
                status_code=HttpStatusCode.NOT_FOUND,
            )
        except Exception as exc:
            logger.error("Failed to serve segment {} for {}: {}", chunk_file, session_id, exc)
            raise AppError(
                errcode=AppErrorCode.E_SEGMENT_READ_FAILED,
                errmesg="Failed to read segment",
                status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
            ) from exc

        headers = SegmentHeaders(
            segment_hash=segment_digest.hex(),
            segment_signature=base64.b64encode(signature).decode("ascii"),
        )
        return SignedSegment(body=body, headers=headers)

    def resolve_asset(self, session_id: str, filename: str) -> tuple[Path, str]:
        """Locate the playlist or init segment of a session, unsigned.

        Raises:
            AppError: 404 for unknown asset types, escaping names or missing files
        """
        suffix = Path(filename).suffix
        media_type = ASSET_MEDIA_TYPES.get(suffix)
        if media_type is None:
            raise AppError(
                errcode=AppErrorCode.E_SEGMENT_NOT_FOUND,
                errmesg=f"File not found: {filename}",
                status_code=HttpStatusCode.NOT_FOUND,
            )

        path = self.resolve(session_id, filename)
        if not path.is_file():
            raise AppError(
                errcode=AppErrorCode.E_SEGMENT_NOT_FOUND,
                errmesg=f"File not found: {filename}",
                status_code=HttpStatusCode.NOT_FOUND,
            )

        return path, media_type


def _read_and_sign(path: Path, private_key) -> tuple[bytes, bytes, bytes]:
    if not path.is_file():
        raise FileNotFoundError(path)
    body = path.read_bytes()
    segment_digest = signer.digest(body)
    return body, segment_digest, signer.sign(segment_digest, private_key)
