"""Ingest state machine for managing pipeline state transitions."""

from sigcast.schemas import IngestState


class InvalidIngestTransition(RuntimeError):
    def __init__(self, current: IngestState, new: IngestState):
        super().__init__(f"Invalid ingest transition {current} -> {new}")
        self.current = current
        self.new = new


class IngestStateMachine:
    """State machine for one producer connection's ingest pipeline.

    State flow with triggers:
    - IDLE -> STARTING (first media bytes received) | STOPPED (disconnect before any data)
    - STARTING -> RUNNING (transcoder launched) | STOPPED (launch failed)
    - RUNNING -> STOPPED (producer disconnected, transcoder exited or failed)
    - STOPPED is terminal; a new connection gets a new pipeline
    """

    TRANSITIONS: dict[IngestState, set[IngestState]] = {
        IngestState.IDLE: {IngestState.STARTING, IngestState.STOPPED},
        IngestState.STARTING: {IngestState.RUNNING, IngestState.STOPPED},
        IngestState.RUNNING: {IngestState.STOPPED},
        IngestState.STOPPED: set(),
    }

    TERMINAL_STATES: set[IngestState] = {IngestState.STOPPED}

    @classmethod
    def can_transition(cls, current: IngestState, new: IngestState) -> bool:
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: IngestState) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def ensure_transition(cls, current: IngestState, new: IngestState) -> None:
        """Raise InvalidIngestTransition unless current -> new is allowed."""
        if not cls.can_transition(current, new):
            raise InvalidIngestTransition(current, new)
