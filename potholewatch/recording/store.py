"""SQLite store for potholes, vehicles and notifications with change callbacks."""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from potholewatch.recording.models import (
    ChangeEvent,
    ChangeType,
    Notification,
    NotificationType,
    Pothole,
    PotholeStatus,
    Severity,
    Vehicle,
)

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS potholes (
    id TEXT PRIMARY KEY,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    severity TEXT NOT NULL CHECK (severity IN ('low', 'medium', 'high')),
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    image_url TEXT,
    vehicle_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'verified', 'repaired')),
    reported_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS vehicles (
    id TEXT PRIMARY KEY,
    vehicle_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 0,
    last_ping TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS notifications (
    id TEXT PRIMARY KEY,
    pothole_id TEXT NOT NULL,
    message TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('detection', 'repair', 'alert')),
    read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
"""

POTHOLE_COLUMNS = (
    "id, latitude, longitude, severity, title, description, image_url, "
    "vehicle_id, status, reported_at, created_at, updated_at"
)
VEHICLE_COLUMNS = "id, vehicle_id, name, is_active, last_ping, created_at"
NOTIFICATION_COLUMNS = "id, pothole_id, message, type, read, created_at"

POTHOLE_UPDATABLE = {
    "latitude", "longitude", "severity", "title", "description",
    "image_url", "vehicle_id", "status", "reported_at",
}


class RecordNotFound(KeyError):
    """No row with the requested id."""


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class PotholeStore:
    """Persists reports and publishes row-level changes to subscribers."""

    def __init__(self, db_path: str):
        self._db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(CREATE_TABLES_SQL)
        self._conn.commit()
        self._lock = threading.Lock()
        self._change_callbacks: list[Callable[[ChangeEvent], None]] = []
        logger.info("Pothole store initialized: %s", db_path)

    def add_change_callback(self, callback: Callable[[ChangeEvent], None]) -> None:
        """Register a callback invoked for every insert, update and delete."""
        self._change_callbacks.append(callback)

    # --- potholes ---

    def create_pothole(self, latitude: float, longitude: float,
                       severity: Severity, title: str, description: str,
                       vehicle_id: str, image_url: str | None = None,
                       reported_at: str | None = None,
                       status: PotholeStatus = PotholeStatus.PENDING) -> Pothole:
        """Insert a new report and its detection notification."""
        now = utcnow()
        pothole = Pothole(
            id=str(uuid.uuid4()),
            latitude=float(latitude),
            longitude=float(longitude),
            severity=Severity(severity),
            title=title,
            description=description,
            vehicle_id=vehicle_id,
            status=PotholeStatus(status),
            image_url=image_url,
            reported_at=reported_at or now,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._conn.execute(
                f"INSERT INTO potholes ({POTHOLE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (pothole.id, pothole.latitude, pothole.longitude,
                 pothole.severity.value, pothole.title, pothole.description,
                 pothole.image_url, pothole.vehicle_id, pothole.status.value,
                 pothole.reported_at, pothole.created_at, pothole.updated_at),
            )
            self._conn.commit()
        logger.info("Created pothole %s (severity=%s, vehicle=%s)",
                    pothole.id, pothole.severity.value, pothole.vehicle_id)
        self._publish("potholes", ChangeType.INSERT, new=pothole.to_dict())

        self.create_notification(
            pothole.id,
            f"{pothole.title} - Severity: {pothole.severity.value}",
            NotificationType.DETECTION,
        )
        return pothole

    def get_pothole(self, pothole_id: str) -> Pothole:
        with self._lock:
            return self._fetch_pothole(pothole_id)

    def _fetch_pothole(self, pothole_id: str) -> Pothole:
        """Caller holds the lock."""
        row = self._conn.execute(
            f"SELECT {POTHOLE_COLUMNS} FROM potholes WHERE id = ?",
            (pothole_id,),
        ).fetchone()
        if row is None:
            raise RecordNotFound(pothole_id)
        return self._row_to_pothole(row)

    def list_potholes(self) -> list[Pothole]:
        """All reports, newest first."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {POTHOLE_COLUMNS} FROM potholes "
                "ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [self._row_to_pothole(row) for row in rows]

    def update_pothole(self, pothole_id: str, **fields: Any) -> Pothole:
        """Update the given columns and stamp ``updated_at``."""
        unknown = set(fields) - POTHOLE_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update pothole fields: {sorted(unknown)}")

        values = dict(fields)
        if "severity" in values:
            values["severity"] = Severity(values["severity"]).value
        if "status" in values:
            values["status"] = PotholeStatus(values["status"]).value
        values["updated_at"] = utcnow()

        assignments = ", ".join(f"{key} = ?" for key in values)
        with self._lock:
            old = self._fetch_pothole(pothole_id)
            self._conn.execute(
                f"UPDATE potholes SET {assignments} WHERE id = ?",
                (*values.values(), pothole_id),
            )
            self._conn.commit()
            updated = self._fetch_pothole(pothole_id)
        self._publish("potholes", ChangeType.UPDATE,
                      new=updated.to_dict(), old=old.to_dict())
        return updated

    def mark_repaired(self, pothole_id: str) -> Pothole:
        pothole = self.update_pothole(pothole_id, status=PotholeStatus.REPAIRED)
        self.create_notification(
            pothole.id, f"{pothole.title} marked as repaired",
            NotificationType.REPAIR,
        )
        return pothole

    def delete_pothole(self, pothole_id: str) -> None:
        old = self.get_pothole(pothole_id)
        with self._lock:
            self._conn.execute("DELETE FROM potholes WHERE id = ?", (pothole_id,))
            self._conn.commit()
        logger.info("Deleted pothole %s", pothole_id)
        self._publish("potholes", ChangeType.DELETE, old=old.to_dict())

    # --- vehicles ---

    def create_vehicle(self, vehicle_id: str, name: str,
                       is_active: bool = False) -> Vehicle:
        now = utcnow()
        vehicle = Vehicle(
            id=str(uuid.uuid4()),
            vehicle_id=vehicle_id,
            name=name,
            is_active=bool(is_active),
            last_ping=now,
            created_at=now,
        )
        with self._lock:
            self._conn.execute(
                f"INSERT INTO vehicles ({VEHICLE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (vehicle.id, vehicle.vehicle_id, vehicle.name,
                 int(vehicle.is_active), vehicle.last_ping, vehicle.created_at),
            )
            self._conn.commit()
        self._publish("vehicles", ChangeType.INSERT, new=vehicle.to_dict())
        return vehicle

    def get_vehicle(self, vehicle_pk: str) -> Vehicle:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {VEHICLE_COLUMNS} FROM vehicles WHERE id = ?",
                (vehicle_pk,),
            ).fetchone()
        if row is None:
            raise RecordNotFound(vehicle_pk)
        return self._row_to_vehicle(row)

    def list_vehicles(self) -> list[Vehicle]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {VEHICLE_COLUMNS} FROM vehicles ORDER BY name"
            ).fetchall()
        return [self._row_to_vehicle(row) for row in rows]

    def update_vehicle_status(self, vehicle_pk: str, is_active: bool) -> Vehicle:
        old = self.get_vehicle(vehicle_pk)
        with self._lock:
            self._conn.execute(
                "UPDATE vehicles SET is_active = ?, last_ping = ? WHERE id = ?",
                (int(bool(is_active)), utcnow(), vehicle_pk),
            )
            self._conn.commit()
        updated = self.get_vehicle(vehicle_pk)
        self._publish("vehicles", ChangeType.UPDATE,
                      new=updated.to_dict(), old=old.to_dict())
        return updated

    def active_vehicle_count(self) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM vehicles WHERE is_active = 1"
            ).fetchone()[0]

    # --- notifications ---

    def create_notification(self, pothole_id: str, message: str,
                            kind: NotificationType = NotificationType.ALERT) -> Notification:
        notification = Notification(
            id=str(uuid.uuid4()),
            pothole_id=pothole_id,
            message=message,
            type=NotificationType(kind),
            read=False,
            created_at=utcnow(),
        )
        with self._lock:
            self._conn.execute(
                f"INSERT INTO notifications ({NOTIFICATION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (notification.id, notification.pothole_id, notification.message,
                 notification.type.value, 0, notification.created_at),
            )
            self._conn.commit()
        self._publish("notifications", ChangeType.INSERT, new=notification.to_dict())
        return notification

    def list_notifications(self, limit: int = 50) -> list[Notification]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {NOTIFICATION_COLUMNS} FROM notifications "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def unread_count(self) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM notifications WHERE read = 0"
            ).fetchone()[0]

    def mark_read(self, notification_id: str) -> Notification:
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE notifications SET read = 1 WHERE id = ?", (notification_id,)
            )
            self._conn.commit()
            if cursor.rowcount == 0:
                raise RecordNotFound(notification_id)
            row = self._conn.execute(
                f"SELECT {NOTIFICATION_COLUMNS} FROM notifications WHERE id = ?",
                (notification_id,),
            ).fetchone()
        notification = self._row_to_notification(row)
        self._publish("notifications", ChangeType.UPDATE, new=notification.to_dict())
        return notification

    def mark_all_read(self) -> int:
        """Mark every unread notification read. Returns how many changed."""
        with self._lock:
            unread = [self._row_to_notification(row) for row in self._conn.execute(
                f"SELECT {NOTIFICATION_COLUMNS} FROM notifications WHERE read = 0"
            ).fetchall()]
            self._conn.execute("UPDATE notifications SET read = 1 WHERE read = 0")
            self._conn.commit()
        for notification in unread:
            notification.read = True
            self._publish("notifications", ChangeType.UPDATE,
                          new=notification.to_dict())
        return len(unread)

    def rows(self, table: str, limit: int = 50) -> list[dict[str, Any]]:
        """Current rows of a table as dicts, for snapshot/rehydrate.

        ``limit`` caps notifications only, newest first.
        """
        if table == "potholes":
            return [p.to_dict() for p in self.list_potholes()]
        if table == "vehicles":
            return [v.to_dict() for v in self.list_vehicles()]
        if table == "notifications":
            return [n.to_dict() for n in self.list_notifications(limit)]
        raise ValueError(f"Unknown table: {table}")

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _publish(self, table: str, change_type: ChangeType,
                 new: dict | None = None, old: dict | None = None) -> None:
        event = ChangeEvent(table=table, change_type=change_type,
                            new=new or {}, old=old or {})
        for callback in self._change_callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Error in change callback")

    @staticmethod
    def _row_to_pothole(row: tuple) -> Pothole:
        return Pothole(
            id=row[0],
            latitude=row[1],
            longitude=row[2],
            severity=Severity(row[3]),
            title=row[4],
            description=row[5],
            image_url=row[6],
            vehicle_id=row[7],
            status=PotholeStatus(row[8]),
            reported_at=row[9],
            created_at=row[10],
            updated_at=row[11],
        )

    @staticmethod
    def _row_to_vehicle(row: tuple) -> Vehicle:
        return Vehicle(
            id=row[0],
            vehicle_id=row[1],
            name=row[2],
            is_active=bool(row[3]),
            last_ping=row[4],
            created_at=row[5],
        )

    @staticmethod
    def _row_to_notification(row: tuple) -> Notification:
        return Notification(
            id=row[0],
            pothole_id=row[1],
            message=row[2],
            type=NotificationType(row[3]),
            read=bool(row[4]),
            created_at=row[5],
        )
