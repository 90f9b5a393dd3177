"""In-memory registry of stream sessions.

The registry is the only owner of `StreamSession` records. Issuance is the
single writer path; viewer requests only read. Records are immutable and are
published with one dict assignment under the write lock, so a concurrent reader
sees either no record or a complete one.
"""

import asyncio
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from loguru import logger

from sigcast.domain.crypto import signer
from sigcast.domain.utils.idgen import new_stream_id
from sigcast.schemas.session import StreamSession

DEFAULT_SESSION_TTL = timedelta(minutes=5)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry:
    def __init__(
        self,
        *,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        key_size: int = signer.DEFAULT_KEY_SIZE,
        clock: Callable[[], datetime] = utc_now,
        key_factory: Callable[[int], signer.KeyPair] = signer.generate_key_pair,
    ) -> None:
        self._ttl = ttl
        self._key_size = key_size
        self._clock = clock
        self._key_factory = key_factory
        self._sessions: dict[str, StreamSession] = {}
        self._write_lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self) -> StreamSession:
        """Create and register a new session.

        Key generation is CPU bound; async callers should run this in a thread.
        Any key generation error propagates and nothing is registered.
        """
        key_pair = self._key_factory(self._key_size)
        issued_at = self._clock()

        with self._write_lock:
            session_id = new_stream_id()
            while session_id in self._sessions:
                session_id = new_stream_id()

            session = StreamSession(
                session_id=session_id,
                key_pair=key_pair,
                issued_at=issued_at,
                expires_at=issued_at + self._ttl,
            )
            self._sessions[session_id] = session

        logger.info("Issued stream session {} expiring at {}", session_id, session.expires_at)
        return session

    def lookup(self, session_id: str) -> StreamSession | None:
        """Return the session if it exists and has not expired.

        Unknown and expired sessions both come back as None.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("Session lookup miss: {}", session_id)
            return None

        if not session.is_valid(self._clock()):
            logger.debug("Session lookup expired: {} (expired at {})", session_id, session.expires_at)
            return None

        return session

    def public_key_of(self, session_id: str) -> bytes | None:
        session = self.lookup(session_id)
        if session is None:
            return None
        return signer.export_public_key(session.key_pair.public_key)

    def sweep(self) -> list[str]:
        """Drop expired records and return their ids."""
        now = self._clock()
        with self._write_lock:
            expired = [sid for sid, session in self._sessions.items() if not session.is_valid(now)]
            for sid in expired:
                del self._sessions[sid]

        if expired:
            logger.info("Swept {} expired stream sessions", len(expired))
        return expired

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return self.lookup(session_id) is not None


async def run_session_sweeper(
    registry: SessionRegistry,
    interval_seconds: float,
    on_swept: Callable[[list[str]], None] | None = None,
    stats: Callable[[], dict] | None = None,
) -> None:
    """Periodically reclaim expired sessions until cancelled."""
    logger.info("Session sweeper started (interval={}s)", interval_seconds)
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            expired = registry.sweep()
            if expired and on_swept is not None:
                on_swept(expired)
            logger.info(
                "Live stream sessions: {} {}",
                len(registry),
                " ".join(f"{k}={v}" for k, v in (stats() if stats else {}).items()),
            )
    except asyncio.CancelledError:
        logger.info("Session sweeper stopped")
        raise
