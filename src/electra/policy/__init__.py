"""Voting policy: parameter resolution and invariant checks."""
