"""CVATS scorer — combines authentication signals and gates admission.

Scoring model:
  T = w_F * face + w_O * otp + w_A * (1 - anomaly) + w_E * entropy

Invariants enforced:
- Weights sum to 1.0 (checked by TrustWeights).
- Every numeric signal is finite; NaN and infinity are rejected, never coerced.
- Finite out-of-range signals are clamped into [0, 1] before weighting.
- Output is clamped to [0, 1].
- Admission needs ALL of: T >= threshold, OTP verified, no spoof flag.
  A spoof is a veto, not a penalty.
"""

from __future__ import annotations

import math
from numbers import Real

from electra.errors import InvalidSignal
from electra.models.trust import AdmissionDecision, TrustScore, TrustSignals, TrustWeights


DEFAULT_ADMISSION_THRESHOLD = 0.75


class TrustScorer:
    """Pure CVATS computation. Holds configuration only, no mutable state."""

    def __init__(
        self,
        weights: TrustWeights | None = None,
        admission_threshold: float = DEFAULT_ADMISSION_THRESHOLD,
    ) -> None:
        if not (0.0 <= admission_threshold <= 1.0):
            raise ValueError(
                f"admission_threshold must be in [0, 1], got {admission_threshold}"
            )
        self._weights = weights or TrustWeights()
        self._threshold = admission_threshold

    @property
    def weights(self) -> TrustWeights:
        return self._weights

    @property
    def admission_threshold(self) -> float:
        return self._threshold

    def score(self, signals: TrustSignals) -> TrustScore:
        """Compute the CVATS score for a set of signals.

        Raises:
            InvalidSignal: a numeric signal is NaN, infinite or not a number,
                or a boolean signal is not a bool.
        """
        face = _unit(signals.face_score, "face_score")
        anomaly = _unit(signals.anomaly_score, "anomaly_score")
        entropy = _unit(signals.blockchain_entropy, "blockchain_entropy")
        otp = 1.0 if _flag(signals.otp_verified, "otp_verified") else 0.0

        w = self._weights
        components = {
            "face": w.face * face,
            "otp": w.otp * otp,
            "anomaly": w.anomaly * (1.0 - anomaly),
            "entropy": w.entropy * entropy,
        }
        raw = sum(components.values())
        return TrustScore(value=min(max(raw, 0.0), 1.0), components=components)

    def admit(self, signals: TrustSignals) -> AdmissionDecision:
        """Score *signals* and apply the composite admission gate."""
        spoof = _flag(signals.is_possible_spoof, "is_possible_spoof")
        score = self.score(signals)

        failed: list[str] = []
        if score.value < self._threshold:
            failed.append(
                f"score {score.value:.3f} below threshold {self._threshold:.3f}"
            )
        if not signals.otp_verified:
            failed.append("otp not verified")
        if spoof:
            failed.append("possible spoof detected")

        return AdmissionDecision(
            admitted=not failed,
            score=score,
            threshold=self._threshold,
            failed_conditions=tuple(failed),
        )


def _unit(value: object, name: str) -> float:
    # bool is a Real subclass; a flag passed as a score is malformed input
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidSignal(f"{name} must be a number, got {type(value).__name__}")
    number = float(value)
    if not math.isfinite(number):
        raise InvalidSignal(f"{name} must be finite, got {number}")
    return min(max(number, 0.0), 1.0)


def _flag(value: object, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidSignal(f"{name} must be a bool, got {type(value).__name__}")
    return value
