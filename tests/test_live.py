"""Tests for the live capture cadence loop."""

from __future__ import annotations

import asyncio

from potholewatch.live import LiveMonitor
from potholewatch.processing.backends import BackendError
from tests.conftest import FakeBackend, FakeGrabber, make_frame, raw


def make_monitor(store, classifier, live_config, frames=None, detections=None,
                 error=None):
    grabber = FakeGrabber(frames if frames is not None else [make_frame()])
    backend = FakeBackend(detections, error)
    monitor = LiveMonitor(grabber, backend, classifier, store, live_config)
    return monitor, grabber, backend


class TestLiveMonitor:
    def test_not_ready_skips_classification(self, store, classifier, live_config):
        """No frame yet: reschedule without calling the backend."""
        monitor, _, backend = make_monitor(store, classifier, live_config, frames=[None])
        assert asyncio.run(monitor.tick()) == []
        assert backend.calls == 0
        assert monitor.stats["ticks"] == 0

    def test_strong_detection_creates_report(self, store, classifier, live_config):
        monitor, _, _ = make_monitor(store, classifier, live_config,
                                     detections=[raw("pothole", 0.95, 10, 10, 110, 90)])
        [det] = asyncio.run(monitor.tick())

        assert det.confidence == 0.95
        [pothole] = store.list_potholes()
        assert pothole.severity.value == "high"
        assert pothole.vehicle_id == "DASHCAM-001"
        assert pothole.title == "Pothole detected via live camera"
        assert "95.0% confidence" in pothole.description
        assert (pothole.latitude, pothole.longitude) == (28.6129, 77.2295)

    def test_weak_detection_not_reported(self, store, classifier, live_config):
        monitor, _, _ = make_monitor(store, classifier, live_config,
                                     detections=[raw("pothole", 0.5)])
        assert len(asyncio.run(monitor.tick())) == 1
        assert store.list_potholes() == []
        assert len(monitor.history) == 1

    def test_location_used_for_reports(self, store, classifier, live_config):
        monitor, _, _ = make_monitor(store, classifier, live_config,
                                     detections=[raw("crack", 0.7)])
        monitor.set_location(51.5, -0.12)
        asyncio.run(monitor.tick())
        [pothole] = store.list_potholes()
        assert (pothole.latitude, pothole.longitude) == (51.5, -0.12)
        assert pothole.severity.value == "low"

    def test_history_is_bounded(self, store, classifier, live_config):
        dets = [raw("pothole", 0.4)] * 4
        monitor, _, _ = make_monitor(store, classifier, live_config, detections=dets)
        for _ in range(5):
            asyncio.run(monitor.tick())
        assert len(monitor.history) == live_config.history_size

    def test_empty_tick_fades_history(self, store, classifier, live_config):
        monitor, _, backend = make_monitor(store, classifier, live_config,
                                           detections=[raw("pothole", 0.4)] * 8)
        asyncio.run(monitor.tick())
        assert len(monitor.history) == 8

        backend.detections = []
        asyncio.run(monitor.tick())
        assert len(monitor.history) == live_config.fade_size

    def test_backend_failure_fails_open(self, store, classifier, live_config):
        monitor, _, _ = make_monitor(store, classifier, live_config,
                                     error=BackendError("timeout"))
        assert asyncio.run(monitor.tick()) == []
        assert monitor.stats["ticks"] == 1

    def test_callbacks_receive_detections(self, store, classifier, live_config):
        received = []
        monitor, _, _ = make_monitor(store, classifier, live_config,
                                     detections=[raw("pothole", 0.4)])
        monitor.add_callback(received.append)
        asyncio.run(monitor.tick())

        assert received[0]["type"] == "detections"
        assert received[0]["detections"][0]["confidence"] == 0.4

    def test_start_stop_cycle(self, store, classifier, live_config):
        """The loop keeps ticking until stop() clears the flag."""
        monitor, grabber, backend = make_monitor(store, classifier, live_config,
                                                 detections=[raw("pothole", 0.4)])

        async def scenario():
            monitor.start()
            await asyncio.sleep(0.1)
            assert monitor.streaming
            await monitor.stop()

        asyncio.run(scenario())
        assert grabber.started and grabber.stopped
        assert backend.calls >= 2
        assert not monitor.streaming
        assert monitor.history == []
