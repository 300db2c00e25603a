"""Wallet entropy — the blockchain-entropy trust signal.

Normalised Shannon entropy of the counterparties in a wallet's
transaction history. A wallet that only ever talks to one address (or
has no history) scores 0.0; an even spread across many counterparties
approaches 1.0. Freshly minted sybil wallets tend to sit near zero.
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Iterable


def wallet_entropy(counterparties: Iterable[str]) -> float:
    """Return the normalised Shannon entropy of *counterparties* in [0, 1]."""
    counts = Counter(c.strip().lower() for c in counterparties if c and c.strip())
    distinct = len(counts)
    if distinct < 2:
        return 0.0

    total = sum(counts.values())
    h = -sum((n / total) * math.log2(n / total) for n in counts.values())
    return max(0.0, min(1.0, h / math.log2(distinct)))
