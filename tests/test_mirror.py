"""Tests for the in-memory table mirror."""

from __future__ import annotations

from potholewatch.recording.mirror import TableMirror
from potholewatch.recording.models import ChangeEvent, ChangeType


def event(change_type, new=None, old=None):
    return ChangeEvent(table="potholes", change_type=change_type,
                       new=new or {}, old=old or {})


class TestTableMirror:
    def test_rehydrate_replaces_everything(self):
        mirror = TableMirror()
        mirror.apply(event(ChangeType.INSERT, {"id": "stale", "created_at": "1"}))
        mirror.rehydrate([{"id": "a", "created_at": "2"}, {"id": "b", "created_at": "3"}])

        assert [r["id"] for r in mirror.rows()] == ["b", "a"]
        assert mirror.get("stale") is None

    def test_insert_update_delete(self):
        mirror = TableMirror()
        mirror.apply(event(ChangeType.INSERT, {"id": "a", "status": "pending",
                                               "created_at": "1"}))
        mirror.apply(event(ChangeType.UPDATE, {"id": "a", "status": "repaired"}))

        assert mirror.get("a") == {"id": "a", "status": "repaired", "created_at": "1"}

        mirror.apply(event(ChangeType.DELETE, old={"id": "a"}))
        assert len(mirror) == 0

    def test_update_of_unknown_row_inserts(self):
        mirror = TableMirror()
        mirror.apply(event(ChangeType.UPDATE, {"id": "late", "created_at": "5"}))
        assert mirror.get("late") is not None

    def test_ascending_order(self):
        mirror = TableMirror(order_key="name", descending=False)
        mirror.rehydrate([{"id": "1", "name": "Zulu"}, {"id": "2", "name": "Alpha"}])
        assert [r["name"] for r in mirror.rows()] == ["Alpha", "Zulu"]

    def test_rows_are_copies(self):
        mirror = TableMirror()
        mirror.rehydrate([{"id": "a", "created_at": "1"}])
        mirror.rows()[0]["id"] = "mutated"
        assert mirror.get("a")["id"] == "a"

    def test_tracks_store(self, store):
        mirror = TableMirror()
        mirror.rehydrate(store.rows("potholes"))
        store.add_change_callback(
            lambda e: mirror.apply(e) if e.table == "potholes" else None)

        pothole = store.create_pothole(1.0, 2.0, "low", "t", "d", "V-1")
        store.mark_repaired(pothole.id)

        assert mirror.get(pothole.id)["status"] == "repaired"

    def test_limit_keeps_newest_rows(self):
        mirror = TableMirror(limit=3)
        mirror.rehydrate([{"id": str(i), "created_at": f"{i:02d}"} for i in range(5)])
        assert [r["id"] for r in mirror.rows()] == ["4", "3", "2"]

        for i in range(5, 9):
            mirror.apply(event(ChangeType.INSERT, {"id": str(i), "created_at": f"{i:02d}"}))
        assert len(mirror) == 3
        assert [r["id"] for r in mirror.rows()] == ["8", "7", "6"]
