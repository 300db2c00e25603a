"""Policy resolver — typed access to the voting parameters file.

All tunables live in ``config/voting_params.json``. Components never read
the file themselves; they receive values (or a config dict) from here.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from electra.models.trust import TrustWeights
from electra.voting.retry import RetryPolicy


PARAMS_FILENAME = "voting_params.json"


class PolicyResolver:
    """Resolves voting policy from a parsed parameters document."""

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @property
    def params(self) -> dict[str, Any]:
        return self._params

    def trust_weights(self) -> TrustWeights:
        w = self._params["trust_weights"]
        return TrustWeights(
            face=w["w_face"],
            otp=w["w_otp"],
            anomaly=w["w_anomaly"],
            entropy=w["w_entropy"],
        )

    def admission_threshold(self) -> float:
        return float(self._params["admission"]["threshold"])

    def face_thresholds(self) -> tuple[float, float]:
        """Return (match_threshold, liveness_threshold)."""
        face = self._params["face_verification"]
        return float(face["match_threshold"]), float(face["liveness_threshold"])

    def fraud_thresholds(self) -> tuple[float, float]:
        """Return (medium_risk_threshold, high_risk_threshold)."""
        fraud = self._params["fraud_detection"]
        return float(fraud["medium_risk_threshold"]), float(fraud["high_risk_threshold"])

    def verification_config(self) -> dict[str, Any]:
        timeouts = self._params["timeouts"]
        return {"verification_timeout_seconds": float(timeouts["verification_timeout_seconds"])}

    def retry_policy(self) -> RetryPolicy:
        r = self._params["retry"]
        return RetryPolicy(
            max_attempts=int(r["max_attempts"]),
            base_delay_seconds=float(r["base_delay_seconds"]),
            backoff_multiplier=float(r["backoff_multiplier"]),
            max_delay_seconds=float(r["max_delay_seconds"]),
            jitter=float(r["jitter"]),
        )

    def commitment_config(self) -> dict[str, Any]:
        """Config dict for VoteCommitmentFSM."""
        timeouts = self._params["timeouts"]
        return {
            "chain_submission_timeout_seconds": float(timeouts["chain_submission_timeout_seconds"]),
            "submission_grace_seconds": float(timeouts["submission_grace_seconds"]),
            "max_selection_changes": int(self._params["ballot"]["max_selection_changes"]),
        }

    def chain_config(self) -> dict[str, Any]:
        """Config dict for Web3BallotBox."""
        chain = self._params["chain"]
        return {
            "chain_id": int(chain["chain_id"]),
            "gas": int(chain["gas"]),
            "gas_price_gwei": str(chain["gas_price_gwei"]),
            "receipt_timeout_seconds": float(chain["receipt_timeout_seconds"]),
        }

    def ballot_box_abi(self, config_dir: Path) -> list[dict[str, Any]]:
        path = Path(config_dir) / self._params["chain"]["abi_file"]
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def tally_abi(self, config_dir: Path) -> list[dict[str, Any]]:
        path = Path(config_dir) / self._params["chain"]["tally_abi_file"]
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
