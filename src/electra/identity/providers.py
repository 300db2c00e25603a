"""Interfaces to the external identity services.

The face/liveness service and the fraud/anomaly service are outside this
package. The commitment core only sees these protocols, so tests and
alternative deployments can plug in deterministic stand-ins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from electra.models.trust import FaceMatch, FraudAssessment


@dataclass(frozen=True)
class FaceVerificationRequest:
    """Reference image identifier plus the live capture to compare."""
    voter_id: str
    reference_image_id: str
    live_capture: str   # opaque payload, e.g. base64 image data


@dataclass(frozen=True)
class FraudContext:
    """Voter, election, device and network context for anomaly scoring."""
    voter_id: str
    election_id: str
    ip_address: str
    device_fingerprint: str
    vote_timestamp_utc: datetime
    geo_location: Optional[tuple[float, float]] = None


class FaceVerifier(Protocol):
    """Face similarity plus liveness detection."""

    async def verify_face(self, request: FaceVerificationRequest) -> FaceMatch:
        ...


class FraudDetector(Protocol):
    """Single-voter anomaly scoring and group-cluster detection."""

    async def assess(self, context: FraudContext) -> FraudAssessment:
        ...
