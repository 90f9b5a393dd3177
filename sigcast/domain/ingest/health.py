"""Last known status of each producer stream."""

from collections.abc import Callable, Iterable
from datetime import datetime

from loguru import logger

from sigcast.domain.session.registry import utc_now
from sigcast.schemas import StreamHealth, StreamHealthStatus


class StreamHealthBoard:
    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._entries: dict[str, StreamHealth] = {}

    def update(self, session_id: str, status: StreamHealthStatus) -> None:
        previous = self._entries.get(session_id)
        self._entries[session_id] = StreamHealth(status=status, updated_at=self._clock())
        if previous is None or previous.status is not status:
            logger.info("Stream {} health: {}", session_id, status)

    def get(self, session_id: str) -> StreamHealth | None:
        return self._entries.get(session_id)

    def forget(self, session_ids: Iterable[str]) -> None:
        """Drop entries for sessions that no longer exist, keeping streams still active."""
        for session_id in session_ids:
            entry = self._entries.get(session_id)
            if entry is not None and entry.status is not StreamHealthStatus.ACTIVE:
                del self._entries[session_id]

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self._entries.values():
            counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
        return counts
