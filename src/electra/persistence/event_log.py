"""Append-only ballot audit log.

Every vote-session transition and every refusal produces an event that
is appended here. Events are immutable once written and each carries a
SHA-256 hash of its canonical JSON, so a persisted log can be checked
for tampering when it is loaded back.

No ballot reaches the chain without an audit record of how it was
admitted.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of ballot events."""
    SESSION_OPENED = "session_opened"
    CANDIDATE_SELECTED = "candidate_selected"
    VERIFICATION_REQUESTED = "verification_requested"
    VERIFICATION_PASSED = "verification_passed"
    VERIFICATION_REJECTED = "verification_rejected"
    SUBMISSION_STARTED = "submission_started"
    SUBMISSION_FAILED = "submission_failed"
    DUPLICATE_SUBMISSION_REFUSED = "duplicate_submission_refused"
    MARKER_TAKEN_OVER = "marker_taken_over"
    VOTE_COMMITTED = "vote_committed"
    SESSION_REJECTED = "session_rejected"
    # Review flags
    RECEIPT_MISMATCH_FLAGGED = "receipt_mismatch_flagged"
    FRAUD_REVIEW_FLAGGED = "fraud_review_flagged"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    voter_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "voter_id": voter_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable ballot event."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    voter_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        voter_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            voter_id=voter_id,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts_str, voter_id, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "voter_id": self.voter_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Events can only be appended, never modified or deleted.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for_ballot(self, voter_id: str, election_id: str) -> list[EventRecord]:
        """Return every event recorded for one voter in one election."""
        return [
            e for e in self._events
            if e.voter_id == voter_id and e.payload.get("election_id") == election_id
        ]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["voter_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    voter_id=data["voter_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
