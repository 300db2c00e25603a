"""Persistence: append-only audit log and compare-and-set state store."""
