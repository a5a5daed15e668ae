"""Shared data models for detection, classification and reporting."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PotholeStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REPAIRED = "repaired"


class NotificationType(str, Enum):
    DETECTION = "detection"
    REPAIR = "repair"
    ALERT = "alert"


class ModelType(str, Enum):
    ROBOFLOW = "roboflow"
    HUGGINGFACE = "huggingface"
    CUSTOM = "custom"
    MOCK = "mock"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class BoundingBox:
    """Frame-relative pixel box."""
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass
class RawDetection:
    """An unfiltered box emitted by an inference backend."""
    label: str
    score: float
    box: BoundingBox


@dataclass
class ClassifiedDetection:
    """A raw detection re-scored into a severity tier."""
    x: float                  # top-left x
    y: float                  # top-left y
    width: float
    height: float
    confidence: float
    severity: Severity
    label: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "confidence": self.confidence,
            "severity": self.severity.value,
        }


@dataclass
class Pothole:
    id: str
    latitude: float
    longitude: float
    severity: Severity
    title: str
    description: str
    vehicle_id: str
    status: PotholeStatus = PotholeStatus.PENDING
    image_url: Optional[str] = None
    reported_at: str = ""
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["status"] = self.status.value
        return data


@dataclass
class Vehicle:
    id: str
    vehicle_id: str
    name: str
    is_active: bool = False
    last_ping: str = ""
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Notification:
    id: str
    pothole_id: str
    message: str
    type: NotificationType = NotificationType.DETECTION
    read: bool = False
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class ChangeEvent:
    """A row-level change published by the store."""
    table: str
    change_type: ChangeType
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "change",
            "table": self.table,
            "event": self.change_type.value,
            "new": self.new,
            "old": self.old,
        }
