"""In-memory mirror of a table, kept current from store change events."""

from __future__ import annotations

import threading
from typing import Any

from potholewatch.recording.models import ChangeEvent, ChangeType


class TableMirror:
    """Ordered collection of rows keyed by id.

    Change delivery is at-most-once, so consumers call ``rehydrate`` with a
    fresh snapshot after any reconnect instead of trusting the deltas.
    With a ``limit``, only the first ``limit`` rows in sort order are kept.
    """

    def __init__(self, order_key: str = "created_at", descending: bool = True,
                 limit: int | None = None):
        self._order_key = order_key
        self._descending = descending
        self._limit = limit
        self._rows: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def rehydrate(self, rows: list[dict[str, Any]]) -> None:
        """Replace the whole collection with a snapshot."""
        with self._lock:
            self._rows = {row["id"]: dict(row) for row in rows}
            self._trim()

    def apply(self, event: ChangeEvent) -> None:
        with self._lock:
            if event.change_type is ChangeType.DELETE:
                self._rows.pop(event.old.get("id"), None)
                return
            row_id = event.new.get("id")
            if row_id is None:
                return
            if event.change_type is ChangeType.UPDATE and row_id in self._rows:
                self._rows[row_id].update(event.new)
            else:
                self._rows[row_id] = dict(event.new)
                self._trim()

    def get(self, row_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._rows.get(row_id)
            return dict(row) if row is not None else None

    def rows(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(row) for row in self._ordered()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def _ordered(self) -> list[dict[str, Any]]:
        # ties keep insertion order
        return sorted(self._rows.values(),
                      key=lambda r: r.get(self._order_key) or "",
                      reverse=self._descending)

    def _trim(self) -> None:
        """Drop rows past the limit; caller holds the lock."""
        if self._limit is None or len(self._rows) <= self._limit:
            return
        self._rows = {row["id"]: row for row in self._ordered()[:self._limit]}
