"""Tests for the activation state machine and error classification."""

import pytest

from renditionworker.core.errors import (
    GenericError,
    InvalidStateTransitionError,
    RenditionFormatUnsupportedError,
    RenditionTooLarge,
    SourceCorruptError,
    SourceUnsupportedError,
    location_of,
    message_of,
    reason_of,
)
from renditionworker.core.state import ActivationState, ActivationStateMachine, can_transition


class TestActivationStateMachine:
    def test_happy_path(self):
        machine = ActivationStateMachine()
        for state in (
            ActivationState.PREPARING,
            ActivationState.PROCESSING,
            ActivationState.FINALIZING,
            ActivationState.DONE,
        ):
            machine.transition(state)
        assert machine.state == ActivationState.DONE

    def test_fatal_from_preparing_then_finalize(self):
        machine = ActivationStateMachine()
        machine.transition(ActivationState.PREPARING)
        machine.transition(ActivationState.FATAL)
        machine.transition(ActivationState.FINALIZING)
        assert machine.state == ActivationState.FINALIZING

    def test_illegal_transition_raises(self):
        machine = ActivationStateMachine()
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            machine.transition(ActivationState.PROCESSING)
        assert exc_info.value.current_state == "init"
        assert exc_info.value.target_state == "processing"

    def test_done_is_final(self):
        for state in ActivationState:
            assert not can_transition(ActivationState.DONE, state)


class TestClassification:
    @pytest.mark.parametrize(
        "err,reason",
        [
            (GenericError("x", "worker_process"), "GenericError"),
            (SourceUnsupportedError("x"), "SourceUnsupported"),
            (SourceCorruptError("x"), "SourceCorrupt"),
            (RenditionFormatUnsupportedError("x"), "RenditionFormatUnsupported"),
            (RenditionTooLarge("x"), "RenditionTooLarge"),
            (ValueError("x"), "GenericError"),
            (None, "GenericError"),
        ],
    )
    def test_reason_of(self, err, reason):
        assert reason_of(err) == reason

    def test_message_of(self):
        assert message_of(GenericError("boom")) == "boom"
        assert message_of(KeyError()) == "KeyError"
        assert message_of(None) is None

    def test_location_of(self):
        assert location_of(GenericError("x", "worker_upload"), "default") == "worker_upload"
        assert location_of(ValueError("x"), "default") == "default"
