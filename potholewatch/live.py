"""Live capture loop: sample the camera, classify, report strong detections."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Callable

from potholewatch.capture.stream import FrameGrabber, MediaError, encode_frame, to_base64
from potholewatch.config import CaptureConfig, LiveConfig
from potholewatch.processing.backends import InferenceBackend
from potholewatch.processing.classifier import Classifier, report_severity
from potholewatch.recording.models import ClassifiedDetection
from potholewatch.recording.store import PotholeStore

logger = logging.getLogger(__name__)


class LiveMonitor:
    """Fixed-cadence polling loop over a FrameGrabber.

    Each tick awaits its own classification before the next sleep, so at
    most one backend call is in flight.  Stopping is cooperative: the
    ``streaming`` flag is checked before every reschedule and an in-flight
    call is allowed to finish.
    """

    def __init__(self, grabber: FrameGrabber, backend: InferenceBackend,
                 classifier: Classifier, store: PotholeStore,
                 config: LiveConfig, capture: CaptureConfig | None = None):
        self._grabber = grabber
        self._backend = backend
        self._classifier = classifier
        self._store = store
        self._cfg = config
        self._jpeg_quality = capture.jpeg_quality if capture else 80

        self._history: deque[ClassifiedDetection] = deque(maxlen=config.history_size)
        self._streaming = False
        self._task: asyncio.Task | None = None
        self._callbacks: list[Callable[[dict], Any]] = []

        self._latitude = config.latitude
        self._longitude = config.longitude

        # Stats
        self._ticks = 0
        self._total_detected = 0
        self._reports_created = 0

    @property
    def streaming(self) -> bool:
        return self._streaming

    @property
    def history(self) -> list[ClassifiedDetection]:
        return list(self._history)

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    @backend.setter
    def backend(self, backend: InferenceBackend) -> None:
        self._backend = backend

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "streaming": self._streaming,
            "connected": self._grabber.is_connected,
            "ticks": self._ticks,
            "total_detected": self._total_detected,
            "reports_created": self._reports_created,
            "location": {"lat": self._latitude, "lng": self._longitude},
            "backend": self._backend.name,
        }

    def add_callback(self, callback: Callable[[dict], Any]) -> None:
        """Register a callback receiving each tick's detections."""
        self._callbacks.append(callback)

    def set_location(self, latitude: float, longitude: float) -> None:
        self._latitude = float(latitude)
        self._longitude = float(longitude)

    def start(self) -> None:
        """Start grabbing frames and schedule the loop on the running event loop."""
        if self._streaming:
            return
        self._streaming = True
        self._grabber.start()
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.info("Live detection started (cadence %d ms)", self._cfg.cadence_ms)

    async def stop(self) -> None:
        """Clear the streaming flag and wait for the current tick to finish."""
        self._streaming = False
        if self._task is not None:
            await self._task
            self._task = None
        self._grabber.stop()
        self._history.clear()
        logger.info("Live detection stopped")

    async def run(self) -> None:
        interval = self._cfg.cadence_ms / 1000.0
        while self._streaming:
            try:
                await self.tick()
            except Exception:
                logger.exception("Detection tick failed")
            if self._streaming:
                await asyncio.sleep(interval)

    async def tick(self) -> list[ClassifiedDetection]:
        """Run one sampling cycle. Returns this tick's detections."""
        frame, _ = self._grabber.get_frame()
        if frame is None:
            logger.debug("Video not ready, retrying")
            return []

        self._ticks += 1
        height, width = frame.shape[:2]
        detections = await self._classify_frame(frame, width, height)

        if detections:
            self._history.extend(detections)
            self._total_detected += len(detections)
            for detection in detections:
                if detection.confidence > self._cfg.report_confidence:
                    self._report(detection)
        else:
            # fade out instead of clearing
            while len(self._history) > self._cfg.fade_size:
                self._history.popleft()

        self._notify(detections)
        return detections

    async def _classify_frame(self, frame, width: int,
                              height: int) -> list[ClassifiedDetection]:
        """Encode, call the backend off-loop, classify. Fails open to []."""
        try:
            image_data = to_base64(encode_frame(frame, self._jpeg_quality))
            raw = await asyncio.to_thread(self._backend.detect, image_data)
        except MediaError:
            logger.exception("Could not encode live frame")
            return []
        except Exception:
            logger.exception("Detection backend call failed")
            return []
        detections = self._classifier.classify(raw, width, height)
        logger.debug("Detection cycle: found %d objects", len(detections))
        return detections

    def _report(self, detection: ClassifiedDetection) -> None:
        severity = report_severity(detection.confidence)
        try:
            self._store.create_pothole(
                latitude=self._latitude,
                longitude=self._longitude,
                severity=severity,
                title="Pothole detected via live camera",
                description=(
                    f"AI detected pothole with {detection.confidence * 100:.1f}% confidence"
                ),
                vehicle_id=self._cfg.vehicle_id,
            )
            self._reports_created += 1
        except Exception:
            logger.exception("Failed to create pothole report")

    def _notify(self, detections: list[ClassifiedDetection]) -> None:
        data = {
            "type": "detections",
            "detections": [d.to_dict() for d in detections],
            "history": [d.to_dict() for d in self._history],
        }
        for callback in self._callbacks:
            try:
                callback(data)
            except Exception:
                logger.exception("Error in detection callback")
