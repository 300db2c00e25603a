"""Electra service — facade over scoring and vote commitment.

This is the interface the web front end talks to. It wires the policy,
the trust scorer, the identity verifier and the commitment FSM
together, and converts every VotingError into a ServiceResult carrying
the voter-facing message. Callers never see raw exceptions for expected
failures; unexpected ones still propagate.

Persistence is optional: without a state store the service keeps
everything in memory, without an event log no audit trail is written.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from electra.chain.gateway import ChainGateway
from electra.errors import VotingError
from electra.identity.providers import FaceVerifier, FraudDetector
from electra.identity.verifier import IdentityVerifier
from electra.models.election import Election
from electra.models.trust import TrustSignals, VerificationEvidence
from electra.models.vote import VoteSession, ballot_key
from electra.persistence.event_log import EventLog
from electra.persistence.state_store import KeyValueStore, StateStore
from electra.policy.resolver import PolicyResolver
from electra.trust.scorer import TrustScorer
from electra.voting.commitment import (
    BALLOT_NAMESPACE,
    SESSION_NAMESPACE,
    VoteCommitmentFSM,
)
from electra.voting.guard import MARKER_NAMESPACE


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class VotingService:
    """Ballot admission and commitment facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = VotingService(resolver, face, fraud, chain)

        result = service.open_ballot("voter-1", election, "0xabc...")
        sid = result.data["session_id"]
        service.choose_candidate(sid, "cand-2")
        service.request_submission(sid)
        await service.verify(sid, evidence)
        await service.submit(sid)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        face_verifier: FaceVerifier,
        fraud_detector: FraudDetector,
        chain: ChainGateway,
        *,
        event_log: Optional[EventLog] = None,
        state_store: Optional[KeyValueStore] = None,
    ) -> None:
        self._resolver = resolver
        self._event_log = event_log
        self._store = state_store if state_store is not None else StateStore()
        self._scorer = TrustScorer(
            resolver.trust_weights(), resolver.admission_threshold(),
        )
        verifier = IdentityVerifier(
            face_verifier, fraud_detector, resolver.verification_config(),
        )
        self._fsm = VoteCommitmentFSM(
            self._scorer,
            verifier,
            chain,
            self._store,
            resolver.commitment_config(),
            retry_policy=resolver.retry_policy(),
            event_log=event_log,
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(self, signals: TrustSignals) -> ServiceResult:
        """Score signals and apply the admission gate, without a session."""
        try:
            decision = self._scorer.admit(signals)
        except VotingError as exc:
            return _error_result(exc)
        return ServiceResult(
            success=True,
            data={
                "admitted": decision.admitted,
                "cvats_score": decision.score.value,
                "display_score": decision.score.display_score(),
                "components": dict(decision.score.components),
                "threshold": decision.threshold,
                "failed_conditions": list(decision.failed_conditions),
            },
        )

    # ------------------------------------------------------------------
    # Ballot flow
    # ------------------------------------------------------------------

    def open_ballot(
        self,
        voter_id: str,
        election: Election,
        voter_address: str,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            session = self._fsm.open_session(voter_id, election, voter_address, now=now)
        except VotingError as exc:
            return _error_result(exc)
        return _session_result(session)

    def choose_candidate(
        self,
        session_id: str,
        candidate_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._call(self._fsm.choose_candidate, session_id, candidate_id, now=now)

    def request_submission(
        self,
        session_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        return self._call(self._fsm.request_submission, session_id, now=now)

    async def verify(
        self,
        session_id: str,
        evidence: VerificationEvidence,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            session = await self._fsm.verify(session_id, evidence, now=now)
        except KeyError:
            return ServiceResult(success=False, errors=[f"Unknown session: {session_id}"])
        except VotingError as exc:
            return _error_result(exc, self._fsm.get_session(session_id))
        return _session_result(session)

    async def submit(
        self,
        session_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            session = await self._fsm.submit(session_id, now=now)
        except KeyError:
            return ServiceResult(success=False, errors=[f"Unknown session: {session_id}"])
        except VotingError as exc:
            return _error_result(exc, self._fsm.get_session(session_id))
        return _session_result(session)

    async def cast_ballot(
        self,
        session_id: str,
        evidence: VerificationEvidence,
        *,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Verify then submit in one call."""
        result = self.request_submission(session_id, now=now)
        if not result.success:
            return result
        result = await self.verify(session_id, evidence, now=now)
        if not result.success:
            return result
        return await self.submit(session_id, now=now)

    def get_session(self, session_id: str) -> Optional[VoteSession]:
        return self._fsm.get_session(session_id)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def ballot_status(self, voter_id: str, election_id: str) -> dict[str, Any]:
        return ballot_status(self._store, voter_id, election_id)

    def review_queue(self) -> list[dict[str, Any]]:
        return review_queue(self._store)

    def status(self) -> dict[str, Any]:
        sessions = self._store.items(SESSION_NAMESPACE)
        by_state = Counter(s["state"] for s in sessions.values())
        return {
            "sessions": {
                "total": len(sessions),
                "by_state": dict(sorted(by_state.items())),
            },
            "ballots_committed": len(self._store.items(BALLOT_NAMESPACE)),
            "submissions_in_flight": len(self._store.items(MARKER_NAMESPACE)),
            "flagged_for_review": len(self.review_queue()),
            "events": self._event_log.count if self._event_log else 0,
            "admission_threshold": self._scorer.admission_threshold,
        }

    def _call(self, fn: Any, *args: Any, **kwargs: Any) -> ServiceResult:
        try:
            session = fn(*args, **kwargs)
        except KeyError:
            return ServiceResult(success=False, errors=[f"Unknown session: {args[0]}"])
        except VotingError as exc:
            return _error_result(exc, self._fsm.get_session(args[0]))
        return _session_result(session)


def ballot_status(store: KeyValueStore, voter_id: str, election_id: str) -> dict[str, Any]:
    """Summarise one ballot from the store alone (usable across processes)."""
    key = ballot_key(voter_id, election_id)
    sessions = [
        s for s in store.items(SESSION_NAMESPACE).values()
        if s["voter_id"] == voter_id and s["election_id"] == election_id
    ]
    sessions.sort(key=lambda s: s["created_utc"])
    return {
        "ballot_key": key,
        "committed": store.get(BALLOT_NAMESPACE, key),
        "in_flight": store.get(MARKER_NAMESPACE, key),
        "sessions": [
            {
                "session_id": s["session_id"],
                "state": s["state"],
                "attempts": s["submission_attempts"],
                "flagged_for_review": s["flagged_for_review"],
            }
            for s in sessions
        ],
    }


def review_queue(store: KeyValueStore) -> list[dict[str, Any]]:
    """Sessions flagged for manual review, oldest first."""
    flagged = [s for s in store.items(SESSION_NAMESPACE).values() if s["flagged_for_review"]]
    return sorted(flagged, key=lambda s: s["created_utc"])


def _session_result(session: VoteSession) -> ServiceResult:
    data: dict[str, Any] = {
        "session_id": session.session_id,
        "state": session.state.value,
        "candidate_id": session.candidate_id,
    }
    if session.trust_score is not None:
        data["cvats_score"] = session.trust_score.value
    if session.chain_receipt is not None:
        data["transaction_hash"] = session.chain_receipt.transaction_hash
    return ServiceResult(success=True, data=data)


def _error_result(exc: VotingError, session: Optional[VoteSession] = None) -> ServiceResult:
    data: dict[str, Any] = {
        "error_kind": type(exc).__name__,
        "terminal": exc.terminal,
        "detail": str(exc),
    }
    if session is not None:
        data["session_id"] = session.session_id
        data["state"] = session.state.value
    receipt = getattr(exc, "receipt", None)
    if receipt is not None:
        data["receipt"] = receipt
    return ServiceResult(success=False, errors=[exc.user_message], data=data)
