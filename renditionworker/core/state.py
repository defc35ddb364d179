"""Lifecycle of an activation."""

from enum import Enum
from threading import Lock
from typing import Dict, FrozenSet

from renditionworker.core.errors import InvalidStateTransitionError


class ActivationState(str, Enum):
    INIT = "init"
    PREPARING = "preparing"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    DONE = "done"
    FATAL = "fatal"


_TRANSITIONS: Dict[ActivationState, FrozenSet[ActivationState]] = {
    ActivationState.INIT: frozenset({ActivationState.PREPARING, ActivationState.FATAL}),
    ActivationState.PREPARING: frozenset({ActivationState.PROCESSING, ActivationState.FATAL}),
    ActivationState.PROCESSING: frozenset({ActivationState.FINALIZING, ActivationState.FATAL}),
    ActivationState.FATAL: frozenset({ActivationState.FINALIZING}),
    ActivationState.FINALIZING: frozenset({ActivationState.DONE}),
    ActivationState.DONE: frozenset(),
}


def can_transition(current: ActivationState, target: ActivationState) -> bool:
    return target in _TRANSITIONS[current]


class ActivationStateMachine:
    """Thread-safe holder of the current activation state."""

    def __init__(self) -> None:
        self._state = ActivationState.INIT
        self._lock = Lock()

    @property
    def state(self) -> ActivationState:
        return self._state

    def transition(self, target: ActivationState) -> ActivationState:
        with self._lock:
            if not can_transition(self._state, target):
                raise InvalidStateTransitionError(self._state.value, target.value)
            previous = self._state
            self._state = target
            return previous
