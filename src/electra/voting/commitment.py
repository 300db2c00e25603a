"""Vote commitment FSM — verify once, submit once, retry safely.

Drives one ballot from candidate selection to a committed chain receipt:

  1. open_session        — election must be open, no ballot committed yet.
  2. choose_candidate    — while SELECTING (one change allowed by default).
  3. request_submission  — locks the candidate, enters VERIFYING.
  4. verify              — face + fraud services, then the admission gate.
                           Any failure rejects the session for good.
  5. submit              — takes the in-flight marker and casts on chain,
                           retrying transient failures with backoff and
                           the same trust snapshot.

Shared state is limited to the in-flight marker and the ballot ledger
entry, both written with compare-and-set. Everything else on a session
is private to this instance. Every transition is persisted to the store
and, when an event log is attached, recorded as an audit event.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from electra.chain.gateway import ChainGateway, ChainOutcome, ChainResult
from electra.errors import (
    BallotAlreadyCast,
    ChainSubmissionError,
    DuplicateSubmission,
    ElectionClosed,
    InvalidSignal,
    ReceiptMismatch,
    SpoofDetected,
    VerificationFailed,
    VerificationTimeout,
    VotingError,
)
from electra.identity.verifier import IdentityVerifier, VerificationOutcome
from electra.models.election import Election, ElectionStatus
from electra.models.trust import VerificationEvidence
from electra.models.vote import (
    ChainReceipt,
    VoteRecord,
    VoteSession,
    VoteState,
    ballot_key,
)
from electra.persistence.event_log import EventKind, EventLog, EventRecord
from electra.persistence.state_store import KeyValueStore, put
from electra.trust.scorer import TrustScorer
from electra.voting.guard import SubmissionGuard
from electra.voting.retry import RetryPolicy
from electra.voting.state_machine import TransitionError, VoteStateMachine

logger = logging.getLogger(__name__)


SESSION_NAMESPACE = "session"
BALLOT_NAMESPACE = "ballot"

DEFAULT_CHAIN_TIMEOUT_SECONDS = 60.0


class VoteCommitmentFSM:
    """Per-ballot state machine with an exactly-once chain submission.

    Parameters (via *config* dict):
        chain_submission_timeout_seconds : float — bound on one chain call (default 60)
        submission_grace_seconds         : float — in-flight marker lifetime (default 300)
        max_selection_changes            : int   — candidate overwrites allowed (default 1)
    """

    def __init__(
        self,
        scorer: TrustScorer,
        verifier: IdentityVerifier,
        chain: ChainGateway,
        store: KeyValueStore,
        config: dict,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._scorer = scorer
        self._verifier = verifier
        self._chain = chain
        self._store = store
        self._retry = retry_policy or RetryPolicy()
        self._event_log = event_log
        self._chain_timeout: float = config.get(
            "chain_submission_timeout_seconds", DEFAULT_CHAIN_TIMEOUT_SECONDS,
        )
        self._max_selection_changes: int = config.get("max_selection_changes", 1)
        self._guard = SubmissionGuard(
            store, grace_seconds=config.get("submission_grace_seconds", 300.0),
        )
        self._sessions: dict[str, VoteSession] = {}
        self._archive: dict[str, VoteSession] = {}
        self._verifying: set[str] = set()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def open_session(
        self,
        voter_id: str,
        election: Election,
        voter_address: str,
        *,
        now: Optional[datetime] = None,
    ) -> VoteSession:
        """Open a ballot for *voter_id* in *election*.

        Raises:
            ElectionClosed: election is not active or outside its window.
            BallotAlreadyCast: the ledger already holds a committed ballot.
        """
        now_utc = now or datetime.now(timezone.utc)
        if not election.is_open(now_utc):
            if election.status != ElectionStatus.ACTIVE:
                reason = f"is {election.status.value}"
            else:
                reason = (
                    f"accepts ballots from {election.start_utc.isoformat()} "
                    f"until {election.end_utc.isoformat()}, not at {now_utc.isoformat()}"
                )
            raise ElectionClosed(
                f"election {election.election_id} {reason}",
                election_id=election.election_id,
            )

        committed = self._store.get(BALLOT_NAMESPACE, ballot_key(voter_id, election.election_id))
        if committed is not None:
            raise BallotAlreadyCast(
                f"voter {voter_id} already voted in {election.election_id}",
                receipt=committed["receipt"],
            )

        session = VoteSession(
            session_id=str(uuid.uuid4()),
            voter_id=voter_id,
            election_id=election.election_id,
            voter_address=voter_address,
            state=VoteState.SELECTING,
            created_utc=now_utc,
        )
        self._sessions[session.session_id] = session
        self._persist(session)
        self._record(EventKind.SESSION_OPENED, session, {"voter_address": voter_address}, now)
        return session

    def get_session(self, session_id: str) -> Optional[VoteSession]:
        """Return an active or archived session."""
        return self._sessions.get(session_id) or self._archive.get(session_id)

    def active_sessions(self) -> list[VoteSession]:
        return list(self._sessions.values())

    def archived_sessions(self) -> list[VoteSession]:
        return list(self._archive.values())

    def choose_candidate(
        self,
        session_id: str,
        candidate_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> VoteSession:
        """Set or change the selected candidate while SELECTING."""
        session = self._active(session_id)
        VoteStateMachine.apply_transition(session, VoteState.SELECTING)

        if not candidate_id:
            raise TransitionError(
                f"{session.session_id}: candidate_id must not be empty",
                session_id=session.session_id,
            )
        if session.candidate_id == candidate_id:
            return session
        if session.candidate_id is not None:
            if session.selection_changes >= self._max_selection_changes:
                raise TransitionError(
                    f"{session.session_id}: selection already changed "
                    f"{session.selection_changes} time(s)",
                    session_id=session.session_id,
                )
            session.selection_changes += 1

        session.candidate_id = candidate_id
        self._persist(session)
        self._record(EventKind.CANDIDATE_SELECTED, session, {"candidate_id": candidate_id}, now)
        return session

    def request_submission(
        self,
        session_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> VoteSession:
        """Lock the selection and move to VERIFYING."""
        session = self._active(session_id)
        if session.candidate_id is None:
            raise TransitionError(
                f"{session.session_id}: no candidate selected",
                session_id=session.session_id,
            )
        VoteStateMachine.apply_transition(session, VoteState.VERIFYING)
        self._persist(session)
        self._record(EventKind.VERIFICATION_REQUESTED, session, {}, now)
        return session

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify(
        self,
        session_id: str,
        evidence: VerificationEvidence,
        *,
        now: Optional[datetime] = None,
    ) -> VoteSession:
        """Run identity verification and the admission gate.

        On success the session holds a trust snapshot in VERIFIED_PENDING.
        On any failure the session is REJECTED and the error re-raised;
        the voter needs a new session for another attempt.

        Raises:
            VerificationTimeout, VerificationFailed, SpoofDetected, InvalidSignal
            TransitionError: another verification of this session is running.
        """
        session = self._active(session_id)
        errors = VoteStateMachine.validate_transition(session, VoteState.VERIFIED_PENDING)
        if errors:
            raise TransitionError(errors[0], session_id=session.session_id)
        if session.session_id in self._verifying:
            raise TransitionError(
                f"{session.session_id}: verification already in progress",
                session_id=session.session_id,
            )

        self._verifying.add(session.session_id)
        try:
            try:
                outcome = await self._verifier.verify(
                    session.voter_id, session.election_id, evidence, now=now,
                )
            except (VerificationTimeout, VerificationFailed) as exc:
                self._ensure_verifying(session)
                self._reject(session, exc, EventKind.VERIFICATION_REJECTED, now)
                raise
            self._ensure_verifying(session)
            return self._admit(session, outcome, evidence, now)
        finally:
            self._verifying.discard(session.session_id)

    def _ensure_verifying(self, session: VoteSession) -> None:
        # The session may have been archived while the services answered
        if session.state != VoteState.VERIFYING:
            raise TransitionError(
                f"{session.session_id}: session is {session.state.value}",
                session_id=session.session_id,
            )

    def _admit(
        self,
        session: VoteSession,
        outcome: VerificationOutcome,
        evidence: VerificationEvidence,
        now: Optional[datetime],
    ) -> VoteSession:
        """Apply the admission gate to a finished verification."""
        if outcome.fraud.needs_review:
            session.flagged_for_review = True
            self._record(EventKind.FRAUD_REVIEW_FLAGGED, session, {
                "fraud_risk": outcome.fraud.fraud_risk.value,
                "anomaly_score": outcome.fraud.anomaly_score,
                "possible_cluster": outcome.fraud.possible_cluster,
                "flagged_issues": list(outcome.fraud.flagged_issues),
            }, now)

        try:
            decision = self._scorer.admit(outcome.signals)
        except InvalidSignal as exc:
            self._reject(session, exc, EventKind.VERIFICATION_REJECTED, now)
            raise

        if not decision.admitted:
            exc: VotingError
            if outcome.signals.is_possible_spoof:
                exc = SpoofDetected(
                    "; ".join(decision.failed_conditions), session_id=session.session_id,
                )
            else:
                exc = VerificationFailed(
                    "; ".join(decision.failed_conditions), session_id=session.session_id,
                )
            self._reject(
                session, exc, EventKind.VERIFICATION_REJECTED, now,
                score=decision.score.value,
            )
            raise exc

        VoteStateMachine.apply_transition(session, VoteState.VERIFIED_PENDING)
        session.trust_score = decision.score
        session.ip_address = evidence.ip_address
        session.device_info = evidence.device_fingerprint
        self._persist(session)
        self._record(EventKind.VERIFICATION_PASSED, session, {
            "cvats_score": decision.score.value,
            "threshold": decision.threshold,
        }, now)
        return session

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        session_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> VoteSession:
        """Cast the ballot on chain exactly once.

        Raises:
            DuplicateSubmission: another session holds a live marker. This
                session stays VERIFIED_PENDING and may try again later.
            BallotAlreadyCast: another session already committed this ballot.
            ChainSubmissionError: the chain refused the vote or every
                attempt failed.
            ReceiptMismatch: the chain holds a vote this session cannot
                account for. Flagged for manual review.
        """
        session = self._active(session_id)
        errors = VoteStateMachine.validate_transition(session, VoteState.SUBMITTING)
        if errors or session.state != VoteState.VERIFIED_PENDING:
            raise TransitionError(
                errors[0] if errors else f"{session.session_id}: submission already started",
                session_id=session.session_id,
            )
        candidate_id = session.candidate_id
        if candidate_id is None:
            raise TransitionError(
                f"{session.session_id}: no candidate selected",
                session_id=session.session_id,
            )

        committed = self._store.get(BALLOT_NAMESPACE, session.key)
        if committed is not None:
            exc = BallotAlreadyCast(
                f"ballot {session.key} committed by session {committed['session_id']}",
                receipt=committed["receipt"],
            )
            self._reject(session, exc, EventKind.SESSION_REJECTED, now)
            raise exc

        claim = self._guard.acquire(session.key, session.session_id, now=now)
        if not claim.acquired:
            self._record(EventKind.DUPLICATE_SUBMISSION_REFUSED, session, {
                "holder_session_id": claim.holder_session_id,
                "marker_expires_utc": claim.expires_utc.isoformat(),
            }, now)
            raise DuplicateSubmission(
                f"ballot {session.key} in flight in session {claim.holder_session_id}",
                session_id=session.session_id,
            )
        if claim.taken_over_from:
            self._record(EventKind.MARKER_TAKEN_OVER, session, {
                "previous_session_id": claim.taken_over_from,
            }, now)

        while True:
            VoteStateMachine.apply_transition(session, VoteState.SUBMITTING)
            session.submission_attempts += 1
            self._persist(session)
            self._record(EventKind.SUBMISSION_STARTED, session, {
                "attempt": session.submission_attempts,
                "candidate_id": session.candidate_id,
            }, now)

            result = await self._cast(session, candidate_id)

            if result.outcome == ChainOutcome.CONFIRMED and result.receipt is not None:
                return self._commit(session, result.receipt, now)

            if result.outcome == ChainOutcome.ALREADY_VOTED:
                return self._reconcile(session, result.receipt, now)

            VoteStateMachine.apply_transition(session, VoteState.FAILED)
            session.last_error = result.error or result.outcome.value
            self._persist(session)
            self._record(EventKind.SUBMISSION_FAILED, session, {
                "attempt": session.submission_attempts,
                "outcome": result.outcome.value,
                "error": session.last_error,
            }, now)

            if not result.retryable:
                exc = ChainSubmissionError(
                    f"chain rejected ballot: {session.last_error}",
                    session_id=session.session_id,
                )
                self._reject(session, exc, EventKind.SESSION_REJECTED, now)
                raise exc

            if session.submission_attempts >= self._retry.max_attempts:
                exc = ChainSubmissionError(
                    f"chain submission failed after {session.submission_attempts} attempts: "
                    f"{session.last_error}",
                    session_id=session.session_id,
                )
                self._reject(session, exc, EventKind.SESSION_REJECTED, now)
                raise exc

            delay = self._retry.backoff(session.submission_attempts)
            logger.warning(
                "Chain submission %d/%d for %s failed (%s); retrying in %.2fs",
                session.submission_attempts, self._retry.max_attempts,
                session.key, session.last_error, delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

            claim = self._guard.acquire(session.key, session.session_id, now=now)
            if not claim.acquired:
                exc = ChainSubmissionError(
                    f"in-flight marker lost to session {claim.holder_session_id}",
                    session_id=session.session_id,
                )
                self._reject(session, exc, EventKind.SESSION_REJECTED, now)
                raise exc

    async def _cast(self, session: VoteSession, candidate_id: str) -> ChainResult:
        try:
            return await asyncio.wait_for(
                self._chain.cast_vote(
                    session.election_id, candidate_id, session.voter_address,
                ),
                timeout=self._chain_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Chain submission for %s timed out after %.1fs",
                session.key, self._chain_timeout,
            )
            return ChainResult(
                outcome=ChainOutcome.NETWORK_ERROR,
                error=f"timed out after {self._chain_timeout}s",
            )
        except Exception as exc:
            logger.warning("Chain gateway raised for %s: %s", session.key, exc)
            return ChainResult(outcome=ChainOutcome.NETWORK_ERROR, error=str(exc))

    def _commit(
        self,
        session: VoteSession,
        receipt: ChainReceipt,
        now: Optional[datetime],
    ) -> VoteSession:
        record = VoteRecord.create(session, receipt, committed_utc=now)
        entry = {
            "session_id": session.session_id,
            "receipt": receipt.to_dict(),
            "record": record.to_dict(),
        }
        if not self._store.compare_and_set(BALLOT_NAMESPACE, session.key, None, entry):
            existing = self._store.get(BALLOT_NAMESPACE, session.key)
            if not (
                existing is not None
                and existing["session_id"] == session.session_id
                and existing["receipt"]["transaction_hash"] == receipt.transaction_hash
            ):
                return self._flag_mismatch(session, receipt, existing, now)

        session.chain_receipt = receipt
        session.last_error = None
        VoteStateMachine.apply_transition(session, VoteState.COMMITTED)
        self._guard.release(session.key, session.session_id)
        self._persist(session)
        self._record(EventKind.VOTE_COMMITTED, session, {
            "transaction_hash": receipt.transaction_hash,
            "candidate_id": receipt.candidate_id,
            "vote_hash": record.vote_hash,
            "cvats_score": record.cvats_score,
            "attempts": session.submission_attempts,
        }, now)
        self._archive_session(session)
        return session

    def _reconcile(
        self,
        session: VoteSession,
        chain_receipt: Optional[ChainReceipt],
        now: Optional[datetime],
    ) -> VoteSession:
        """Map the chain's "already voted" answer onto this session.

        The chain's vote belongs to this session only if it matches the
        session's election, candidate and address, AND either the ledger
        already records that transaction for this session, or this
        session dispatched an earlier attempt whose outcome was unknown.
        """
        local = self._store.get(BALLOT_NAMESPACE, session.key)
        same_ballot = (
            chain_receipt is not None
            and chain_receipt.election_id == session.election_id
            and chain_receipt.candidate_id == session.candidate_id
            and chain_receipt.voter_address.lower() == session.voter_address.lower()
        )

        if same_ballot and local is not None:
            same_tx = local["receipt"]["transaction_hash"] == chain_receipt.transaction_hash
            if same_tx and local["session_id"] == session.session_id:
                return self._commit(session, chain_receipt, now)
            if same_tx:
                exc = BallotAlreadyCast(
                    f"ballot {session.key} committed by session {local['session_id']}",
                    receipt=local["receipt"],
                )
                self._reject(session, exc, EventKind.SESSION_REJECTED, now)
                raise exc

        if same_ballot and local is None and session.submission_attempts > 1:
            logger.info(
                "Earlier attempt for %s landed on chain as %s",
                session.key, chain_receipt.transaction_hash,
            )
            return self._commit(session, chain_receipt, now)

        return self._flag_mismatch(session, chain_receipt, local, now)

    def _flag_mismatch(
        self,
        session: VoteSession,
        chain_receipt: Optional[ChainReceipt],
        local: Optional[dict[str, Any]],
        now: Optional[datetime],
    ) -> VoteSession:
        session.flagged_for_review = True
        self._record(EventKind.RECEIPT_MISMATCH_FLAGGED, session, {
            "chain_receipt": chain_receipt.to_dict() if chain_receipt else None,
            "local_ballot": local,
            "candidate_id": session.candidate_id,
        }, now)
        logger.error(
            "Receipt mismatch for %s in session %s; flagged for review",
            session.key, session.session_id,
        )
        exc = ReceiptMismatch(
            f"chain reports a vote for {session.key} that does not match local records",
            session_id=session.session_id,
        )
        self._reject(session, exc, EventKind.SESSION_REJECTED, now)
        raise exc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _active(self, session_id: str) -> VoteSession:
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        archived = self._archive.get(session_id)
        if archived is not None:
            raise TransitionError(
                f"{session_id}: session is {archived.state.value}",
                session_id=session_id,
            )
        raise KeyError(f"Unknown session: {session_id}")

    def _reject(
        self,
        session: VoteSession,
        error: VotingError,
        kind: EventKind,
        now: Optional[datetime],
        **extra: Any,
    ) -> None:
        VoteStateMachine.apply_transition(session, VoteState.REJECTED)
        session.last_error = str(error)
        self._guard.release(session.key, session.session_id)
        self._persist(session)
        self._record(kind, session, {
            "error_kind": type(error).__name__,
            "error": str(error),
            **extra,
        }, now)
        self._archive_session(session)

    def _archive_session(self, session: VoteSession) -> None:
        self._sessions.pop(session.session_id, None)
        self._archive[session.session_id] = session

    def _persist(self, session: VoteSession) -> None:
        put(self._store, SESSION_NAMESPACE, session.session_id, session.snapshot())

    def _record(
        self,
        kind: EventKind,
        session: VoteSession,
        payload: dict[str, Any],
        now: Optional[datetime],
    ) -> None:
        if self._event_log is None:
            return
        self._event_log.append(EventRecord.create(
            event_id=f"EV-{uuid.uuid4().hex}",
            event_kind=kind,
            voter_id=session.voter_id,
            payload={
                "election_id": session.election_id,
                "session_id": session.session_id,
                "state": session.state.value,
                **payload,
            },
            timestamp_utc=now,
        ))
