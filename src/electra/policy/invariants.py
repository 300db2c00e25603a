"""Invariant checks over the voting parameters.

Returns a list of violations; an empty list means the parameters are
safe to run with.
"""

from __future__ import annotations

import math
from typing import Any


def check_params(params: dict[str, Any]) -> list[str]:
    errors: list[str] = []

    # --- Trust weights ---
    weights = params["trust_weights"]
    names = ("w_face", "w_otp", "w_anomaly", "w_entropy")
    for name in names:
        if name not in weights:
            errors.append(f"trust_weights missing {name}")
        elif weights[name] < 0.0:
            errors.append(f"{name} must be >= 0.0, got {weights[name]}")
    if all(n in weights for n in names):
        total = sum(weights[n] for n in names)
        if not math.isclose(total, 1.0, rel_tol=0.0, abs_tol=1e-9):
            errors.append(f"w_face + w_otp + w_anomaly + w_entropy must equal 1.0, got {total}")
        if weights["w_face"] < weights["w_entropy"]:
            errors.append("w_face must not be outweighed by w_entropy")

    # --- Admission gate ---
    threshold = params["admission"]["threshold"]
    if not (0.0 < threshold <= 1.0):
        errors.append(f"admission.threshold must be in (0, 1], got {threshold}")

    # --- Service thresholds ---
    face = params["face_verification"]
    for name in ("match_threshold", "liveness_threshold"):
        if not (0.0 <= face[name] <= 1.0):
            errors.append(f"face_verification.{name} must be in [0, 1]")
    fraud = params["fraud_detection"]
    if not (0.0 <= fraud["medium_risk_threshold"] < fraud["high_risk_threshold"] <= 1.0):
        errors.append(
            "fraud_detection thresholds must satisfy 0 <= medium < high <= 1"
        )

    # --- Timeouts ---
    timeouts = params["timeouts"]
    for name in (
        "verification_timeout_seconds",
        "chain_submission_timeout_seconds",
        "submission_grace_seconds",
    ):
        if timeouts[name] <= 0:
            errors.append(f"timeouts.{name} must be > 0")
    # Marker must outlive one chain submission attempt
    if timeouts["submission_grace_seconds"] < timeouts["chain_submission_timeout_seconds"]:
        errors.append("submission_grace_seconds must be >= chain_submission_timeout_seconds")

    # --- Retry ---
    retry = params["retry"]
    if retry["max_attempts"] < 1:
        errors.append("retry.max_attempts must be >= 1")
    if retry["base_delay_seconds"] < 0 or retry["max_delay_seconds"] < retry["base_delay_seconds"]:
        errors.append("retry delays must satisfy 0 <= base_delay <= max_delay")
    if retry["backoff_multiplier"] < 1.0:
        errors.append("retry.backoff_multiplier must be >= 1.0")
    if not (0.0 <= retry["jitter"] < 1.0):
        errors.append("retry.jitter must be in [0, 1)")

    # --- Ballot ---
    if params["ballot"]["max_selection_changes"] < 0:
        errors.append("ballot.max_selection_changes must be >= 0")

    # --- Chain ---
    chain = params["chain"]
    if chain["gas"] <= 0:
        errors.append("chain.gas must be > 0")
    if not (0 < chain["receipt_timeout_seconds"] < timeouts["chain_submission_timeout_seconds"]):
        errors.append(
            "chain.receipt_timeout_seconds must be > 0 and below "
            "timeouts.chain_submission_timeout_seconds"
        )

    return errors
