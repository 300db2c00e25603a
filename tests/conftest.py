"""Shared stand-ins for the external face, fraud and chain services."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from electra.chain.gateway import ChainOutcome, ChainResult
from electra.identity.providers import FaceVerificationRequest, FraudContext
from electra.identity.verifier import IdentityVerifier
from electra.models.election import Election, ElectionStatus
from electra.models.trust import (
    FaceMatch,
    FraudAssessment,
    FraudRisk,
    VerificationEvidence,
)
from electra.models.vote import ChainReceipt
from electra.persistence.event_log import EventLog
from electra.persistence.state_store import StateStore
from electra.trust.scorer import TrustScorer
from electra.voting.commitment import VoteCommitmentFSM
from electra.voting.retry import RetryPolicy


NOW = datetime(2025, 2, 26, 12, 0, 0, tzinfo=timezone.utc)


class StubFaceVerifier:
    def __init__(
        self,
        result: Optional[FaceMatch] = None,
        *,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        self.result = result or FaceMatch(
            score=0.92, is_match=True, liveness_score=0.95, is_possible_spoof=False,
        )
        self.delay = delay
        self.error = error
        self.calls: list[FaceVerificationRequest] = []

    async def verify_face(self, request: FaceVerificationRequest) -> FaceMatch:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class StubFraudDetector:
    def __init__(
        self,
        result: Optional[FraudAssessment] = None,
        *,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        self.result = result or FraudAssessment(
            fraud_risk=FraudRisk.LOW, anomaly_score=0.15,
        )
        self.delay = delay
        self.error = error
        self.calls: list[FraudContext] = []

    async def assess(self, context: FraudContext) -> FraudAssessment:
        self.calls.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class ScriptedChain:
    """Ballot-box contract double with one vote per (election, address).

    Each cast consumes the next script step; an empty script confirms.
    Steps: "confirm", "network_error", "rejected", "hang" (sleeps past any
    timeout), "raise", "land_then_error" (records the vote but reports a
    network error, as when a confirmation is lost).
    """

    def __init__(self, script: Optional[list[str]] = None) -> None:
        self.script = list(script or [])
        self.calls: list[tuple[str, str, str]] = []
        self.votes: dict[tuple[str, str], ChainReceipt] = {}
        self.hold: Optional[asyncio.Event] = None

    async def cast_vote(
        self,
        election_id: str,
        candidate_id: str,
        voter_address: str,
    ) -> ChainResult:
        self.calls.append((election_id, candidate_id, voter_address))
        if self.hold is not None:
            await self.hold.wait()
        step = self.script.pop(0) if self.script else "confirm"

        if step == "hang":
            await asyncio.sleep(3600)
        if step == "raise":
            raise ConnectionError("rpc endpoint unreachable")
        if step == "network_error":
            return ChainResult(outcome=ChainOutcome.NETWORK_ERROR, error="nonce too low")
        if step == "rejected":
            return ChainResult(outcome=ChainOutcome.REJECTED, error="voter not registered")

        key = (election_id, voter_address)
        existing = self.votes.get(key)
        if existing is not None:
            return ChainResult(outcome=ChainOutcome.ALREADY_VOTED, receipt=existing)

        receipt = ChainReceipt(
            transaction_hash=f"0x{len(self.calls):064x}",
            election_id=election_id,
            candidate_id=candidate_id,
            voter_address=voter_address,
            block_timestamp_utc="2025-02-26T12:00:05Z",
        )
        self.votes[key] = receipt
        if step == "land_then_error":
            return ChainResult(outcome=ChainOutcome.NETWORK_ERROR, error="receipt not received")
        return ChainResult(outcome=ChainOutcome.CONFIRMED, receipt=receipt)


@pytest.fixture
def election() -> Election:
    return Election(
        election_id="E-001",
        title="City Municipal Corporation Election",
        status=ElectionStatus.ACTIVE,
        start_utc=NOW - timedelta(days=1),
        end_utc=NOW + timedelta(days=2),
    )


@pytest.fixture
def evidence() -> VerificationEvidence:
    return VerificationEvidence(
        reference_image_id="img-ref-001",
        live_capture="data:image/jpeg;base64,AAAA",
        otp_verified=True,
        blockchain_entropy=0.5,
        ip_address="203.0.113.7",
        device_fingerprint="fp-01",
    )


@pytest.fixture
def make_fsm():
    """Factory building a VoteCommitmentFSM over fresh or supplied parts."""

    def _make(
        face: Optional[StubFaceVerifier] = None,
        fraud: Optional[StubFraudDetector] = None,
        chain: Optional[ScriptedChain] = None,
        store: Optional[StateStore] = None,
        event_log: Optional[EventLog] = None,
        retry: Optional[RetryPolicy] = None,
        config: Optional[dict] = None,
        verification_timeout: float = 10.0,
    ):
        face = face or StubFaceVerifier()
        fraud = fraud or StubFraudDetector()
        chain = chain or ScriptedChain()
        store = store if store is not None else StateStore()
        event_log = event_log if event_log is not None else EventLog()
        verifier = IdentityVerifier(
            face, fraud, {"verification_timeout_seconds": verification_timeout},
        )
        fsm = VoteCommitmentFSM(
            TrustScorer(),
            verifier,
            chain,
            store,
            config or {},
            retry_policy=retry or RetryPolicy(base_delay_seconds=0.0, jitter=0.0),
            event_log=event_log,
        )
        return fsm, {
            "face": face,
            "fraud": fraud,
            "chain": chain,
            "store": store,
            "event_log": event_log,
        }

    return _make


@pytest.fixture
def stubs():
    """Expose the stand-in classes to test modules."""
    return {
        "face": StubFaceVerifier,
        "fraud": StubFraudDetector,
        "chain": ScriptedChain,
    }
