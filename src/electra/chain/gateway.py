"""Chain submission layer interface.

The ballot-box contract records one vote per (election, voter address).
A gateway answers every cast with a structured ChainResult instead of
raising, so the commitment FSM can tell the outcomes apart:

- CONFIRMED      — transaction mined, receipt attached.
- ALREADY_VOTED  — the contract already holds a vote for this voter;
                   ``receipt`` describes the vote it holds.
- NETWORK_ERROR  — transient; the FSM may retry.
- REJECTED       — the contract refused the vote (closed election,
                   unregistered voter). Not retryable.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Protocol

from electra.models.vote import ChainReceipt


class ChainOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    ALREADY_VOTED = "already_voted"
    NETWORK_ERROR = "network_error"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ChainResult:
    outcome: ChainOutcome
    receipt: Optional[ChainReceipt] = None
    error: str = ""

    @property
    def retryable(self) -> bool:
        return self.outcome == ChainOutcome.NETWORK_ERROR


class ChainGateway(Protocol):
    """Casts ballots on the ballot-box contract."""

    async def cast_vote(
        self,
        election_id: str,
        candidate_id: str,
        voter_address: str,
    ) -> ChainResult:
        ...
