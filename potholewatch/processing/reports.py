"""Dashboard statistics and analytical reports over pothole rows."""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable

Row = dict[str, Any]


def _created(row: Row) -> datetime | None:
    value = row.get("created_at")
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _month_of(row: Row) -> tuple[int, int] | None:
    ts = _created(row)
    return (ts.year, ts.month) if ts else None


def _day_of(row: Row) -> date | None:
    ts = _created(row)
    return ts.date() if ts else None


def _severity_counts(rows: Iterable[Row]) -> dict[str, int]:
    counts = Counter(row.get("severity") for row in rows)
    return {level: counts.get(level, 0) for level in ("high", "medium", "low")}


def dashboard_stats(potholes: list[Row], active_vehicles: int = 0,
                    unread_notifications: int = 0) -> dict[str, int]:
    """Totals shown on the dashboard header cards."""
    statuses = Counter(row.get("status") for row in potholes)
    return {
        "total": len(potholes),
        **_severity_counts(potholes),
        "pending": statuses.get("pending", 0),
        "verified": statuses.get("verified", 0),
        "repaired": statuses.get("repaired", 0),
        "active_vehicles": active_vehicles,
        "unread_notifications": unread_notifications,
    }


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def verification_rate(potholes: list[Row]) -> float:
    return _percent(sum(1 for r in potholes if r.get("status") == "verified"),
                    len(potholes))


def repair_rate(potholes: list[Row]) -> float:
    return _percent(sum(1 for r in potholes if r.get("status") == "repaired"),
                    len(potholes))


def monthly_trends(potholes: list[Row], months: int = 6,
                   now: datetime | None = None) -> list[dict[str, Any]]:
    """Per-month severity and repair counts, oldest month first."""
    now = now or datetime.now(timezone.utc)
    buckets: list[tuple[int, int]] = []
    year, month = now.year, now.month
    for _ in range(months):
        buckets.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    buckets.reverse()

    result = []
    for year, month in buckets:
        in_month = [r for r in potholes if _month_of(r) == (year, month)]
        result.append({
            "month": date(year, month, 1).strftime("%b"),
            "year": year,
            "total": len(in_month),
            **_severity_counts(in_month),
            "repaired": sum(1 for r in in_month if r.get("status") == "repaired"),
        })
    return result


def daily_detections(potholes: list[Row], days: int = 7,
                     now: datetime | None = None) -> list[dict[str, Any]]:
    """Per-day detection counts for the last ``days`` days, oldest first."""
    today = (now or datetime.now(timezone.utc)).date()
    result = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        on_day = [r for r in potholes if _day_of(r) == day]
        result.append({
            "day": day.strftime("%a"),
            "date": day.isoformat(),
            "detections": len(on_day),
            **_severity_counts(on_day),
        })
    return result


def vehicle_performance(potholes: list[Row],
                        vehicles: list[Row]) -> list[dict[str, Any]]:
    """Detections per vehicle and the share of them that were verified."""
    result = []
    for vehicle in vehicles:
        found = [r for r in potholes if r.get("vehicle_id") == vehicle.get("vehicle_id")]
        verified = sum(1 for r in found if r.get("status") == "verified")
        result.append({
            "name": vehicle.get("name"),
            "vehicle_id": vehicle.get("vehicle_id"),
            "detections": len(found),
            "efficiency": _percent(verified, len(found)),
        })
    return result


def build_report(potholes: list[Row], vehicles: list[Row],
                 now: datetime | None = None) -> dict[str, Any]:
    severity = _severity_counts(potholes)
    statuses = Counter(row.get("status") for row in potholes)
    daily = daily_detections(potholes, now=now)
    return {
        "severity": [{"name": k.capitalize(), "value": v}
                     for k, v in severity.items() if v],
        "status": [{"name": str(k).capitalize(), "value": v}
                   for k, v in statuses.items()],
        "monthly": monthly_trends(potholes, now=now),
        "daily": daily,
        "weekly_detections": sum(d["detections"] for d in daily),
        "vehicles": vehicle_performance(potholes, vehicles),
        "verification_rate": verification_rate(potholes),
        "repair_rate": repair_rate(potholes),
    }
