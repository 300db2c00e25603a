"""Vote commitment — state machine, submission guard and retry policy."""

from electra.voting.commitment import VoteCommitmentFSM
from electra.voting.guard import SubmissionGuard
from electra.voting.retry import RetryPolicy
from electra.voting.state_machine import TransitionError, VoteStateMachine

__all__ = [
    "VoteCommitmentFSM",
    "SubmissionGuard",
    "RetryPolicy",
    "TransitionError",
    "VoteStateMachine",
]
