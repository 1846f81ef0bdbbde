"""Pipeline session state machine.

``next_phase`` is a pure transition function; ``PipelineStateMachine`` wraps it
with the current phase and a transition history for one request.
"""

from datetime import datetime
from enum import Enum
from typing import List, NamedTuple

from knowledge_base.timeutils import utc_now


class PipelinePhase(str, Enum):
    INIT = "init"
    AUTHENTICATED = "authenticated"
    ACQUIRING = "acquiring"
    EXTRACTING = "extracting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


class Signal(str, Enum):
    AUTHENTICATED = "authenticated"
    INPUT_ACCEPTED = "input_accepted"
    ACQUIRED = "acquired"
    EXTRACTION_ACCEPTED = "extraction_accepted"
    TOKEN = "token"
    STREAM_END = "stream_end"
    FINALIZED = "finalized"
    FAILURE = "failure"


TERMINAL_PHASES = frozenset({PipelinePhase.COMPLETE, PipelinePhase.FAILED})

_TRANSITIONS = {
    (PipelinePhase.INIT, Signal.AUTHENTICATED): PipelinePhase.AUTHENTICATED,
    (PipelinePhase.AUTHENTICATED, Signal.INPUT_ACCEPTED): PipelinePhase.ACQUIRING,
    (PipelinePhase.ACQUIRING, Signal.ACQUIRED): PipelinePhase.EXTRACTING,
    (PipelinePhase.EXTRACTING, Signal.EXTRACTION_ACCEPTED): PipelinePhase.STREAMING,
    (PipelinePhase.STREAMING, Signal.TOKEN): PipelinePhase.STREAMING,
    (PipelinePhase.STREAMING, Signal.STREAM_END): PipelinePhase.FINALIZING,
    (PipelinePhase.FINALIZING, Signal.FINALIZED): PipelinePhase.COMPLETE,
}


class InvalidTransition(RuntimeError):
    """A signal arrived that the current phase does not accept."""

    def __init__(self, phase: PipelinePhase, signal: Signal):
        super().__init__(f"No transition from {phase.value} on {signal.value}")
        self.phase = phase
        self.signal = signal


def next_phase(phase: PipelinePhase, signal: Signal) -> PipelinePhase:
    """Return the phase reached from ``phase`` on ``signal``.

    Any non-terminal phase may fail. Terminal phases accept nothing.

    Raises:
        InvalidTransition: If the pair is not part of the state machine
    """
    if phase in TERMINAL_PHASES:
        raise InvalidTransition(phase, signal)
    if signal is Signal.FAILURE:
        return PipelinePhase.FAILED
    try:
        return _TRANSITIONS[(phase, signal)]
    except KeyError:
        raise InvalidTransition(phase, signal) from None


class TransitionRecord(NamedTuple):
    source: PipelinePhase
    signal: Signal
    target: PipelinePhase
    timestamp: datetime


class PipelineStateMachine:
    """Current phase plus history for one pipeline session."""

    def __init__(self):
        self.phase = PipelinePhase.INIT
        self.history: List[TransitionRecord] = []
        self.token_count = 0

    def fire(self, signal: Signal) -> PipelinePhase:
        target = next_phase(self.phase, signal)
        if signal is Signal.TOKEN:
            # Token self-loops are counted, not recorded, to keep history small
            self.token_count += 1
        else:
            self.history.append(
                TransitionRecord(self.phase, signal, target, utc_now())
            )
        self.phase = target
        return target

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def get_path(self) -> List[str]:
        """Phases visited in order, starting at init."""
        return [PipelinePhase.INIT.value] + [r.target.value for r in self.history]
