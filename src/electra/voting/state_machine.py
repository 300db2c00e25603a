"""Vote session state machine — enforces the legal transition set.

Session lifecycle:
    SELECTING → VERIFYING → VERIFIED_PENDING → SUBMITTING → COMMITTED
    VERIFYING → REJECTED               (verification failed or timed out)
    SUBMITTING → FAILED → SUBMITTING   (bounded chain retry)
    FAILED → REJECTED                  (retries exhausted)
    SUBMITTING → REJECTED              (receipt mismatch)
    VERIFIED_PENDING → REJECTED        (ballot committed by another session)

COMMITTED and REJECTED are terminal. Fail-closed: anything not listed
is refused. There is no path from REJECTED to COMMITTED.
"""

from __future__ import annotations

from electra.errors import VotingError
from electra.models.vote import VoteSession, VoteState


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[VoteState, set[VoteState]] = {
    VoteState.SELECTING: {VoteState.SELECTING, VoteState.VERIFYING},
    VoteState.VERIFYING: {VoteState.VERIFIED_PENDING, VoteState.REJECTED},
    VoteState.VERIFIED_PENDING: {VoteState.SUBMITTING, VoteState.REJECTED},
    VoteState.SUBMITTING: {
        VoteState.COMMITTED,
        VoteState.FAILED,
        VoteState.REJECTED,
    },
    VoteState.FAILED: {VoteState.SUBMITTING, VoteState.REJECTED},
    # Terminal states: no outgoing transitions
    VoteState.COMMITTED: set(),
    VoteState.REJECTED: set(),
}


class TransitionError(VotingError):
    """Raised when a session transition is not allowed."""

    user_message = "This step is not available at the current stage of your ballot."


class VoteStateMachine:
    """Validates and applies session state transitions.

    Pure computation: side effects (audit events, persistence, chain
    calls) belong to VoteCommitmentFSM.
    """

    @staticmethod
    def validate_transition(session: VoteSession, target: VoteState) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = session.state
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid session transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(session: VoteSession, target: VoteState) -> None:
        """Validate and apply a transition, raising TransitionError if illegal."""
        errors = VoteStateMachine.validate_transition(session, target)
        if errors:
            raise TransitionError(errors[0], session_id=session.session_id)
        session.state = target

    @staticmethod
    def is_terminal(state: VoteState) -> bool:
        return state in (VoteState.COMMITTED, VoteState.REJECTED)

    @staticmethod
    def valid_transitions(state: VoteState) -> set[VoteState]:
        return set(_TRANSITIONS.get(state, set()))
