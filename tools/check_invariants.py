#!/usr/bin/env python3
"""Electra invariant checks against the executable voting parameters."""

import json
import sys
from pathlib import Path

from electra.policy.invariants import check_params


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "voting_params.json"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check() -> int:
    errors = check_params(load_json(PARAMS_PATH))
    if errors:
        for error in errors:
            print(f"FAIL: {error}")
        return 1
    print("All voting invariants hold.")
    return 0


if __name__ == "__main__":
    sys.exit(check())
