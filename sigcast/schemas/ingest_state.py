"""Ingest pipeline states."""

from enum import Enum


class IngestState(str, Enum):
    """Lifecycle of one producer connection's transcoder.

    IDLE → STARTING → RUNNING → STOPPED
      ↓        ↓
    STOPPED  STOPPED

    - IDLE: Connection accepted, no media received yet.
    - STARTING: First media bytes arrived, transcoder being launched.
    - RUNNING: Transcoder accepting input.
    - STOPPED: Producer disconnected, transcoder exited, or launch failed. Terminal.
    """

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"

    def __str__(self) -> str:
        return self.value


__all__ = ["IngestState"]
