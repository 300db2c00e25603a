"""Ballot state store — key-value records with atomic compare-and-set.

Records live in namespaces (``session``, ``marker``, ``ballot``) keyed
by the ballot key of a (voter, election) pair. compare_and_set is the
only mutation primitive: a write succeeds only if the stored value still
equals what the caller last read. Two browser tabs racing for the same
ballot therefore cannot both win.

The store is in-memory with optional JSON file persistence. Each
successful write rewrites the file via temp file + fsync + rename, so a
crash leaves either the old or the new state on disk, never a torn file.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional, Protocol


class KeyValueStore(Protocol):
    """Minimal durable store contract the commitment core depends on."""

    def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        ...

    def compare_and_set(
        self,
        namespace: str,
        key: str,
        expected: Optional[dict[str, Any]],
        new: Optional[dict[str, Any]],
    ) -> bool:
        ...

    def items(self, namespace: str) -> dict[str, dict[str, Any]]:
        ...


class StateStore:
    """Thread-safe namespaced store with optional file persistence."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            with storage_path.open("r", encoding="utf-8") as f:
                loaded = json.load(f)
            if not isinstance(loaded, dict):
                raise ValueError(f"State file {storage_path} is not a JSON object")
            self._data = loaded

    def get(self, namespace: str, key: str) -> Optional[dict[str, Any]]:
        """Return a copy of the stored value, or None."""
        with self._lock:
            value = self._data.get(namespace, {}).get(key)
            return copy.deepcopy(value)

    def compare_and_set(
        self,
        namespace: str,
        key: str,
        expected: Optional[dict[str, Any]],
        new: Optional[dict[str, Any]],
    ) -> bool:
        """Atomically replace *expected* with *new*.

        ``expected=None`` means "only if absent"; ``new=None`` deletes.
        Returns False, without writing, if the current value differs.
        """
        with self._lock:
            bucket = self._data.setdefault(namespace, {})
            if bucket.get(key) != expected:
                return False
            if new is None:
                bucket.pop(key, None)
            else:
                bucket[key] = copy.deepcopy(new)
            if self._storage_path:
                self._write_file()
            return True

    def items(self, namespace: str) -> dict[str, dict[str, Any]]:
        """Return a copy of every record in *namespace*."""
        with self._lock:
            return copy.deepcopy(self._data.get(namespace, {}))

    def _write_file(self) -> None:
        path = self._storage_path
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, sort_keys=True, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except BaseException:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise


def put(store: KeyValueStore, namespace: str, key: str, value: dict[str, Any]) -> None:
    """Unconditionally write *value*, retrying the CAS until it lands.

    Only for records owned by a single writer (a session's own snapshot).
    Shared records must go through compare_and_set directly.
    """
    while True:
        current = store.get(namespace, key)
        if store.compare_and_set(namespace, key, current, value):
            return
