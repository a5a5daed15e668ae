"""Tests for dashboard statistics and analytical reports."""

from __future__ import annotations

from datetime import datetime, timezone

from potholewatch.processing import reports

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def row(severity="low", status="pending", created_at="2026-03-15T08:00:00+00:00",
        vehicle_id="V-1"):
    return {"severity": severity, "status": status,
            "created_at": created_at, "vehicle_id": vehicle_id}


class TestDashboardStats:
    def test_counts(self):
        rows = [row("high"), row("high", "repaired"), row("medium", "verified")]
        stats = reports.dashboard_stats(rows, active_vehicles=2, unread_notifications=5)

        assert stats == {
            "total": 3, "high": 2, "medium": 1, "low": 0,
            "pending": 1, "verified": 1, "repaired": 1,
            "active_vehicles": 2, "unread_notifications": 5,
        }

    def test_rates_empty(self):
        assert reports.verification_rate([]) == 0.0
        assert reports.repair_rate([]) == 0.0

    def test_rates(self):
        rows = [row(status="verified"), row(status="repaired"), row(), row()]
        assert reports.verification_rate(rows) == 25.0
        assert reports.repair_rate(rows) == 25.0


class TestTrends:
    def test_monthly_spans_year_boundary(self):
        rows = [
            row("high", created_at="2025-12-03T10:00:00+00:00"),
            row("low", "repaired", created_at="2026-03-01T00:00:00Z"),
            row(created_at="2024-01-01T00:00:00+00:00"),    # out of range
        ]
        months = reports.monthly_trends(rows, now=NOW)

        assert [m["month"] for m in months] == ["Oct", "Nov", "Dec", "Jan", "Feb", "Mar"]
        assert months[2]["high"] == 1 and months[2]["year"] == 2025
        assert months[-1]["total"] == 1 and months[-1]["repaired"] == 1

    def test_daily_last_week(self):
        rows = [
            row("high", created_at="2026-03-15T01:00:00+00:00"),
            row("medium", created_at="2026-03-09T23:00:00+00:00"),
            row(created_at="2026-03-08T23:00:00+00:00"),    # 7 days ago, out of range
        ]
        days = reports.daily_detections(rows, now=NOW)

        assert len(days) == 7
        assert days[0]["date"] == "2026-03-09" and days[0]["medium"] == 1
        assert days[-1]["date"] == "2026-03-15" and days[-1]["high"] == 1
        assert sum(d["detections"] for d in days) == 2

    def test_bad_timestamps_ignored(self):
        days = reports.daily_detections([row(created_at="yesterday")], now=NOW)
        assert sum(d["detections"] for d in days) == 0


class TestVehiclePerformance:
    def test_efficiency(self):
        rows = [row(status="verified"), row(), row(vehicle_id="V-2")]
        vehicles = [{"name": "Van", "vehicle_id": "V-1"},
                    {"name": "Idle", "vehicle_id": "V-9"}]
        perf = reports.vehicle_performance(rows, vehicles)

        assert perf[0] == {"name": "Van", "vehicle_id": "V-1",
                           "detections": 2, "efficiency": 50.0}
        assert perf[1]["detections"] == 0 and perf[1]["efficiency"] == 0.0

    def test_build_report(self):
        report = reports.build_report([row("high"), row("low")], [], now=NOW)
        assert report["severity"] == [{"name": "High", "value": 1},
                                      {"name": "Low", "value": 1}]
        assert report["weekly_detections"] == 2
