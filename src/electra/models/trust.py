"""Trust signal, score and verification data models.

The admission score (CVATS) is:
  T = w_F * face + w_O * otp + w_A * (1 - anomaly) + w_E * entropy

- Weights are fixed configuration, w_F + w_O + w_A + w_E = 1.0.
- Spoof detection is never weighted. It is an absolute veto applied by
  the admission gate.
- External services report their own thresholds (is_match, fraud_risk);
  only the raw scores feed the weighted average.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Optional


DEFAULT_FACE_MATCH_THRESHOLD = 0.6
DEFAULT_LIVENESS_THRESHOLD = 0.7
DEFAULT_FRAUD_MEDIUM_THRESHOLD = 0.5
DEFAULT_FRAUD_HIGH_THRESHOLD = 0.8


@dataclass(frozen=True)
class TrustWeights:
    """Weights for the four CVATS components. Must sum to 1.0."""
    face: float = 0.4
    otp: float = 0.2
    anomaly: float = 0.3
    entropy: float = 0.1

    def __post_init__(self) -> None:
        values = (self.face, self.otp, self.anomaly, self.entropy)
        if any(not math.isfinite(w) or w < 0.0 for w in values):
            raise ValueError(f"Trust weights must be finite and non-negative: {values}")
        if not math.isclose(sum(values), 1.0, rel_tol=0.0, abs_tol=1e-9):
            raise ValueError(f"Trust weights must sum to 1.0, got {sum(values)}")

    def as_dict(self) -> dict[str, float]:
        return {
            "face": self.face,
            "otp": self.otp,
            "anomaly": self.anomaly,
            "entropy": self.entropy,
        }


@dataclass(frozen=True)
class TrustSignals:
    """Independent authentication signals for one verification attempt."""
    face_score: float
    otp_verified: bool
    anomaly_score: float            # higher = more suspicious
    blockchain_entropy: float
    is_possible_spoof: bool = False  # veto only, not weighted


@dataclass(frozen=True)
class TrustScore:
    """Result of scoring a set of TrustSignals.

    ``components`` holds each weighted contribution before the final
    clamp, keyed like TrustWeights.
    """
    value: float
    components: dict[str, float] = field(default_factory=dict)

    def display_score(self) -> int:
        """Return the score on the 0-1000 dashboard scale."""
        return int(round(self.value * 1000))

    def to_dict(self) -> dict:
        return {"value": self.value, "components": dict(self.components)}

    @staticmethod
    def from_dict(data: dict) -> TrustScore:
        return TrustScore(
            value=float(data["value"]),
            components={k: float(v) for k, v in data.get("components", {}).items()},
        )


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of the composite admission gate."""
    admitted: bool
    score: TrustScore
    threshold: float
    failed_conditions: tuple[str, ...] = ()


class FraudRisk(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def classify_fraud_risk(
    anomaly_score: float,
    medium_threshold: float = DEFAULT_FRAUD_MEDIUM_THRESHOLD,
    high_threshold: float = DEFAULT_FRAUD_HIGH_THRESHOLD,
) -> FraudRisk:
    """Bucket an anomaly score into a risk level (strictly-above thresholds)."""
    if anomaly_score > high_threshold:
        return FraudRisk.HIGH
    if anomaly_score > medium_threshold:
        return FraudRisk.MEDIUM
    return FraudRisk.LOW


@dataclass(frozen=True)
class FaceMatch:
    """Face similarity and liveness result from the face service."""
    score: float
    is_match: bool
    liveness_score: float
    is_possible_spoof: bool

    @staticmethod
    def from_scores(
        similarity: float,
        liveness: float,
        match_threshold: float = DEFAULT_FACE_MATCH_THRESHOLD,
        liveness_threshold: float = DEFAULT_LIVENESS_THRESHOLD,
    ) -> FaceMatch:
        return FaceMatch(
            score=similarity,
            is_match=similarity > match_threshold,
            liveness_score=liveness,
            is_possible_spoof=liveness < liveness_threshold,
        )


@dataclass(frozen=True)
class FraudAssessment:
    """Anomaly result from the fraud service."""
    fraud_risk: FraudRisk
    anomaly_score: float
    possible_cluster: bool = False
    flagged_issues: tuple[str, ...] = ()

    @property
    def needs_review(self) -> bool:
        return self.possible_cluster or self.fraud_risk == FraudRisk.HIGH


@dataclass(frozen=True)
class VerificationEvidence:
    """What the voter supplies for one verification attempt.

    The live capture is opaque to the core; it is handed to the face
    service untouched.
    """
    reference_image_id: str
    live_capture: str
    otp_verified: bool
    blockchain_entropy: float
    ip_address: str = ""
    device_fingerprint: str = ""
    geo_location: Optional[tuple[float, float]] = None
