"""CVATS trust scoring and admission gate."""

from electra.trust.scorer import TrustScorer
from electra.trust.entropy import wallet_entropy

__all__ = ["TrustScorer", "wallet_entropy"]
