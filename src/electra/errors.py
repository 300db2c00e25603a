"""Error kinds raised by the admission and commitment core.

Every error carries a ``user_message`` that a voter-facing surface can
display as-is, and a ``terminal`` flag telling the caller whether the
ballot session is finished. Non-terminal errors leave the session where
it was so the voter can try again.
"""

from __future__ import annotations

from typing import Any, Optional


class VotingError(Exception):
    """Base class for all admission and commitment failures."""

    user_message: str = "Your vote could not be processed."
    terminal: bool = False

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.user_message)
        self.context: dict[str, Any] = context


class InvalidSignal(VotingError, ValueError):
    """A trust signal could not be interpreted as a number in [0, 1]."""

    user_message = "Identity checks returned unusable data. Please start again."
    terminal = True


class SpoofDetected(VotingError):
    """Liveness check reported a possible spoof. Absolute veto."""

    user_message = (
        "We could not confirm that a live person is present. "
        "Please start a new ballot in good lighting without filters."
    )
    terminal = True


class VerificationFailed(VotingError):
    """Identity verification did not pass the admission gate."""

    user_message = (
        "Identity verification was not successful. "
        "Please start a new ballot to try again."
    )
    terminal = True


class VerificationTimeout(VerificationFailed):
    """Verification services did not answer within the bound."""

    user_message = (
        "Identity verification took too long. "
        "Please start a new ballot to try again."
    )


class DuplicateSubmission(VotingError):
    """Another session for the same voter and election is submitting."""

    user_message = (
        "A submission for this ballot is already in progress. "
        "Please wait for it to finish."
    )
    terminal = False


class ChainSubmissionError(VotingError):
    """The chain layer failed on every allowed attempt."""

    user_message = (
        "Your vote could not be recorded on the blockchain. "
        "No vote was counted; please contact election support."
    )
    terminal = True


class ReceiptMismatch(VotingError):
    """The chain reports a vote that does not match local records."""

    user_message = (
        "Your ballot needs manual review by election officials. "
        "You will be contacted with the outcome."
    )
    terminal = True


class ElectionClosed(VotingError):
    """The election is not accepting ballots."""

    user_message = "This election is not open for voting."
    terminal = True


class BallotAlreadyCast(VotingError):
    """A ballot has already been committed for this voter and election."""

    user_message = "You have already voted in this election."
    terminal = True

    def __init__(self, message: str = "", receipt: Optional[dict] = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.receipt = receipt
