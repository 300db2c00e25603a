"""Identity verification — gathers trust signals from external services.

Runs the face and fraud services concurrently under one timeout and
turns their answers into TrustSignals for the scorer. Any service error
or timeout is a verification failure: the session is rejected and the
voter must start over with a fresh attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from electra.errors import VerificationFailed, VerificationTimeout
from electra.identity.providers import (
    FaceVerificationRequest,
    FaceVerifier,
    FraudContext,
    FraudDetector,
)
from electra.models.trust import (
    FaceMatch,
    FraudAssessment,
    TrustSignals,
    VerificationEvidence,
)

logger = logging.getLogger(__name__)


DEFAULT_VERIFICATION_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class VerificationOutcome:
    """Raw service answers plus the signals derived from them."""
    face: FaceMatch
    fraud: FraudAssessment
    signals: TrustSignals


class IdentityVerifier:
    """Collects face and fraud results for one verification attempt.

    Parameters (via *config* dict):
        verification_timeout_seconds : float — bound on both calls together (default 10)
    """

    def __init__(
        self,
        face_verifier: FaceVerifier,
        fraud_detector: FraudDetector,
        config: dict,
    ) -> None:
        self._face = face_verifier
        self._fraud = fraud_detector
        self._timeout: float = config.get(
            "verification_timeout_seconds", DEFAULT_VERIFICATION_TIMEOUT_SECONDS,
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def verify(
        self,
        voter_id: str,
        election_id: str,
        evidence: VerificationEvidence,
        *,
        now: Optional[datetime] = None,
    ) -> VerificationOutcome:
        """Call both services and build TrustSignals from their answers.

        Raises:
            VerificationTimeout: services did not both answer in time.
            VerificationFailed: a service raised.
        """
        face_request = FaceVerificationRequest(
            voter_id=voter_id,
            reference_image_id=evidence.reference_image_id,
            live_capture=evidence.live_capture,
        )
        fraud_context = FraudContext(
            voter_id=voter_id,
            election_id=election_id,
            ip_address=evidence.ip_address,
            device_fingerprint=evidence.device_fingerprint,
            vote_timestamp_utc=now or datetime.now(timezone.utc),
            geo_location=evidence.geo_location,
        )

        try:
            face, fraud = await asyncio.wait_for(
                asyncio.gather(
                    self._face.verify_face(face_request),
                    self._fraud.assess(fraud_context),
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Verification for voter %s in election %s timed out after %.1fs",
                voter_id, election_id, self._timeout,
            )
            raise VerificationTimeout(
                f"verification exceeded {self._timeout}s",
                voter_id=voter_id,
                election_id=election_id,
            ) from exc
        except Exception as exc:
            logger.warning(
                "Verification service error for voter %s in election %s: %s",
                voter_id, election_id, exc,
            )
            raise VerificationFailed(
                f"verification service error: {exc}",
                voter_id=voter_id,
                election_id=election_id,
            ) from exc

        signals = TrustSignals(
            face_score=face.score,
            otp_verified=evidence.otp_verified,
            anomaly_score=fraud.anomaly_score,
            blockchain_entropy=evidence.blockchain_entropy,
            is_possible_spoof=face.is_possible_spoof,
        )
        return VerificationOutcome(face=face, fraud=fraud, signals=signals)
