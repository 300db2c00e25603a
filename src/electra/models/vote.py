"""Vote session, chain receipt and vote record models.

Session invariants (enforced by VoteCommitmentFSM, not here):
- voter_id, election_id and session_id never change.
- candidate_id is only written while SELECTING.
- trust_score, ip_address and device_info are only written on entering
  VERIFIED_PENDING.
- chain_receipt is only written on entering COMMITTED.
- At most one session per (voter_id, election_id) reaches COMMITTED.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from electra.models.trust import TrustScore


class VoteState(str, enum.Enum):
    SELECTING = "selecting"
    VERIFYING = "verifying"
    VERIFIED_PENDING = "verified_pending"
    SUBMITTING = "submitting"
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"


def ballot_key(voter_id: str, election_id: str) -> str:
    """Store key shared by every session of one voter in one election."""
    return f"{election_id}:{voter_id}"


@dataclass(frozen=True)
class ChainReceipt:
    """Transaction receipt for a ballot recorded on chain."""
    transaction_hash: str
    election_id: str
    candidate_id: str
    voter_address: str
    block_timestamp_utc: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "transaction_hash": self.transaction_hash,
            "election_id": self.election_id,
            "candidate_id": self.candidate_id,
            "voter_address": self.voter_address,
            "block_timestamp_utc": self.block_timestamp_utc,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ChainReceipt:
        return ChainReceipt(
            transaction_hash=data["transaction_hash"],
            election_id=data["election_id"],
            candidate_id=data["candidate_id"],
            voter_address=data["voter_address"],
            block_timestamp_utc=data.get("block_timestamp_utc", ""),
        )


@dataclass
class VoteSession:
    """Mutable state of one voter's ballot in one election."""

    session_id: str
    voter_id: str
    election_id: str
    voter_address: str
    state: VoteState
    created_utc: datetime
    candidate_id: Optional[str] = None
    selection_changes: int = 0
    trust_score: Optional[TrustScore] = None
    chain_receipt: Optional[ChainReceipt] = None
    submission_attempts: int = 0
    flagged_for_review: bool = False
    last_error: Optional[str] = None
    ip_address: str = ""
    device_info: str = ""

    @property
    def key(self) -> str:
        return ballot_key(self.voter_id, self.election_id)

    def snapshot(self) -> dict[str, Any]:
        """JSON-serialisable view for the session store."""
        return {
            "session_id": self.session_id,
            "voter_id": self.voter_id,
            "election_id": self.election_id,
            "voter_address": self.voter_address,
            "state": self.state.value,
            "created_utc": self.created_utc.isoformat(),
            "candidate_id": self.candidate_id,
            "selection_changes": self.selection_changes,
            "trust_score": self.trust_score.to_dict() if self.trust_score else None,
            "chain_receipt": self.chain_receipt.to_dict() if self.chain_receipt else None,
            "submission_attempts": self.submission_attempts,
            "flagged_for_review": self.flagged_for_review,
            "last_error": self.last_error,
            "ip_address": self.ip_address,
            "device_info": self.device_info,
        }


@dataclass(frozen=True)
class VoteRecord:
    """Ledger entry for a committed ballot."""
    voter_id: str
    election_id: str
    candidate_id: str
    transaction_hash: str
    cvats_score: float
    vote_hash: str
    committed_utc: str
    ip_address: str = ""
    device_info: str = ""

    @staticmethod
    def create(
        session: VoteSession,
        receipt: ChainReceipt,
        committed_utc: Optional[datetime] = None,
    ) -> VoteRecord:
        """Build a record with vote_hash over the canonical vote details."""
        ts = (committed_utc or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        cvats = session.trust_score.value if session.trust_score else 0.0
        canonical = json.dumps(
            {
                "voter_id": session.voter_id,
                "election_id": session.election_id,
                "candidate_id": receipt.candidate_id,
                "transaction_hash": receipt.transaction_hash,
                "cvats_score": cvats,
            },
            sort_keys=True,
            ensure_ascii=False,
        ).encode("utf-8")
        return VoteRecord(
            voter_id=session.voter_id,
            election_id=session.election_id,
            candidate_id=receipt.candidate_id,
            transaction_hash=receipt.transaction_hash,
            cvats_score=cvats,
            vote_hash=f"sha256:{hashlib.sha256(canonical).hexdigest()}",
            committed_utc=ts,
            ip_address=session.ip_address,
            device_info=session.device_info,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "voter_id": self.voter_id,
            "election_id": self.election_id,
            "candidate_id": self.candidate_id,
            "transaction_hash": self.transaction_hash,
            "cvats_score": self.cvats_score,
            "vote_hash": self.vote_hash,
            "committed_utc": self.committed_utc,
            "ip_address": self.ip_address,
            "device_info": self.device_info,
        }
