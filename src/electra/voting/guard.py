"""Exactly-once submission guard — the in-flight marker.

Before a session may contact the chain it must own the marker for its
ballot key. Ownership is taken with compare-and-set, so of two racing
sessions exactly one wins. The marker is released when its owner
reaches a terminal state. A marker whose grace period has passed
belongs to a crashed client and may be taken over.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from electra.persistence.state_store import KeyValueStore

logger = logging.getLogger(__name__)


MARKER_NAMESPACE = "marker"
DEFAULT_GRACE_SECONDS = 300.0


@dataclass(frozen=True)
class MarkerClaim:
    """Result of an acquire attempt."""
    acquired: bool
    holder_session_id: str
    expires_utc: datetime
    taken_over_from: Optional[str] = None


class SubmissionGuard:
    """Acquires and releases in-flight markers through a KeyValueStore."""

    def __init__(
        self,
        store: KeyValueStore,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self._store = store
        self._grace = timedelta(seconds=grace_seconds)

    def acquire(
        self,
        key: str,
        session_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> MarkerClaim:
        """Claim the marker for *session_id*.

        Re-acquiring a marker the session already holds refreshes its
        expiry (used between retries). Returns a claim with
        ``acquired=False`` when a live marker belongs to another session.
        """
        now_utc = now or datetime.now(timezone.utc)
        while True:
            current = self._store.get(MARKER_NAMESPACE, key)
            taken_over_from: Optional[str] = None

            if current is not None and current["session_id"] != session_id:
                expires = datetime.fromisoformat(current["expires_utc"])
                if now_utc < expires:
                    return MarkerClaim(
                        acquired=False,
                        holder_session_id=current["session_id"],
                        expires_utc=expires,
                    )
                taken_over_from = current["session_id"]

            expires_utc = now_utc + self._grace
            marker: dict[str, Any] = {
                "session_id": session_id,
                "acquired_utc": now_utc.isoformat(),
                "expires_utc": expires_utc.isoformat(),
            }
            if self._store.compare_and_set(MARKER_NAMESPACE, key, current, marker):
                if taken_over_from:
                    logger.warning(
                        "Session %s took over expired marker for %s from %s",
                        session_id, key, taken_over_from,
                    )
                return MarkerClaim(
                    acquired=True,
                    holder_session_id=session_id,
                    expires_utc=expires_utc,
                    taken_over_from=taken_over_from,
                )
            # Lost a race: re-read and decide again

    def release(self, key: str, session_id: str) -> bool:
        """Release the marker if *session_id* still owns it."""
        while True:
            current = self._store.get(MARKER_NAMESPACE, key)
            if current is None or current["session_id"] != session_id:
                return False
            if self._store.compare_and_set(MARKER_NAMESPACE, key, current, None):
                return True

    def holder(self, key: str) -> Optional[str]:
        """Return the session_id currently holding the marker, if any."""
        current = self._store.get(MARKER_NAMESPACE, key)
        return current["session_id"] if current else None
