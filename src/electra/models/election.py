"""Election window and on-chain tally models."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


class ElectionStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Election:
    """An election that ballots can be opened against."""
    election_id: str
    title: str
    status: ElectionStatus
    start_utc: datetime
    end_utc: datetime

    def is_open(self, now: Optional[datetime] = None) -> bool:
        """True if the election is active and *now* falls in its window."""
        if self.status != ElectionStatus.ACTIVE:
            return False
        now_utc = now or datetime.now(timezone.utc)
        return self.start_utc <= now_utc < self.end_utc


@dataclass(frozen=True)
class ElectionResults:
    """Tally read back from the Tally contract.

    candidate_ids and vote_counts are parallel; totals are only final once
    is_finalized is set.
    """
    election_id: str
    is_finalized: bool
    total_votes: int
    winning_candidate_id: str
    candidate_ids: tuple[str, ...]
    vote_counts: tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.candidate_ids) != len(self.vote_counts):
            raise ValueError(
                f"Tally for {self.election_id} has {len(self.candidate_ids)} candidates "
                f"but {len(self.vote_counts)} counts"
            )
        if any(count < 0 for count in self.vote_counts):
            raise ValueError(f"Tally for {self.election_id} has a negative count")

    def counts(self) -> dict[str, int]:
        return dict(zip(self.candidate_ids, self.vote_counts))

    def to_dict(self) -> dict[str, Any]:
        return {
            "election_id": self.election_id,
            "is_finalized": self.is_finalized,
            "total_votes": self.total_votes,
            "winning_candidate_id": self.winning_candidate_id,
            "vote_counts": self.counts(),
        }
