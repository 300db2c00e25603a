"""Tests for vote session state machine — lifecycle transitions."""

from datetime import datetime, timezone

import pytest

from electra.models.vote import VoteSession, VoteState
from electra.voting.state_machine import TransitionError, VoteStateMachine


def _make_session(state: VoteState = VoteState.SELECTING) -> VoteSession:
    return VoteSession(
        session_id="S-001",
        voter_id="V-001",
        election_id="E-001",
        voter_address="0xvoter",
        state=state,
        created_utc=datetime(2025, 2, 26, tzinfo=timezone.utc),
    )


class TestValidTransitions:
    @pytest.mark.parametrize("source,target", [
        (VoteState.SELECTING, VoteState.SELECTING),
        (VoteState.SELECTING, VoteState.VERIFYING),
        (VoteState.VERIFYING, VoteState.VERIFIED_PENDING),
        (VoteState.VERIFYING, VoteState.REJECTED),
        (VoteState.VERIFIED_PENDING, VoteState.SUBMITTING),
        (VoteState.VERIFIED_PENDING, VoteState.REJECTED),
        (VoteState.SUBMITTING, VoteState.COMMITTED),
        (VoteState.SUBMITTING, VoteState.FAILED),
        (VoteState.SUBMITTING, VoteState.REJECTED),
        (VoteState.FAILED, VoteState.SUBMITTING),
        (VoteState.FAILED, VoteState.REJECTED),
    ])
    def test_allowed(self, source: VoteState, target: VoteState) -> None:
        session = _make_session(source)
        assert VoteStateMachine.validate_transition(session, target) == []


class TestInvalidTransitions:
    def test_selecting_cannot_skip_verification(self) -> None:
        session = _make_session(VoteState.SELECTING)
        errors = VoteStateMachine.validate_transition(session, VoteState.SUBMITTING)
        assert len(errors) == 1
        assert "Invalid session transition" in errors[0]

    def test_verifying_cannot_submit(self) -> None:
        session = _make_session(VoteState.VERIFYING)
        assert VoteStateMachine.validate_transition(session, VoteState.SUBMITTING)

    def test_failed_cannot_reverify(self) -> None:
        session = _make_session(VoteState.FAILED)
        assert VoteStateMachine.validate_transition(session, VoteState.VERIFYING)

    def test_rejected_to_anything(self) -> None:
        """REJECTED is terminal — in particular it can never reach COMMITTED."""
        session = _make_session(VoteState.REJECTED)
        for target in VoteState:
            errors = VoteStateMachine.validate_transition(session, target)
            assert len(errors) == 1, f"REJECTED → {target.value} should be invalid"

    def test_committed_to_anything(self) -> None:
        session = _make_session(VoteState.COMMITTED)
        for target in VoteState:
            errors = VoteStateMachine.validate_transition(session, target)
            assert len(errors) == 1, f"COMMITTED → {target.value} should be invalid"

    def test_no_path_from_rejected_to_committed(self) -> None:
        seen = {VoteState.REJECTED}
        frontier = [VoteState.REJECTED]
        while frontier:
            state = frontier.pop()
            for nxt in VoteStateMachine.valid_transitions(state):
                if nxt not in seen:
                    seen.add(nxt)
                    frontier.append(nxt)
        assert VoteState.COMMITTED not in seen


class TestApplyTransition:
    def test_apply_valid_transition(self) -> None:
        session = _make_session(VoteState.SELECTING)
        VoteStateMachine.apply_transition(session, VoteState.VERIFYING)
        assert session.state == VoteState.VERIFYING

    def test_apply_invalid_transition_no_mutation(self) -> None:
        session = _make_session(VoteState.SELECTING)
        with pytest.raises(TransitionError):
            VoteStateMachine.apply_transition(session, VoteState.COMMITTED)
        assert session.state == VoteState.SELECTING

    def test_transition_error_is_not_terminal(self) -> None:
        assert TransitionError.terminal is False


class TestTerminalAndValidTransitions:
    def test_terminal_states(self) -> None:
        assert VoteStateMachine.is_terminal(VoteState.COMMITTED)
        assert VoteStateMachine.is_terminal(VoteState.REJECTED)

    def test_failed_is_not_terminal(self) -> None:
        assert not VoteStateMachine.is_terminal(VoteState.FAILED)

    def test_valid_transitions_from_failed(self) -> None:
        assert VoteStateMachine.valid_transitions(VoteState.FAILED) == {
            VoteState.SUBMITTING, VoteState.REJECTED,
        }

    def test_valid_transitions_returns_copy(self) -> None:
        allowed = VoteStateMachine.valid_transitions(VoteState.SELECTING)
        allowed.clear()
        assert VoteStateMachine.valid_transitions(VoteState.SELECTING)
