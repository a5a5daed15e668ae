"""Service orchestrator: backend + classifier + store + live monitor."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from potholewatch.capture.stream import FrameGrabber, decode_base64_image
from potholewatch.config import AppConfig, save_config_values
from potholewatch.live import LiveMonitor
from potholewatch.processing import reports
from potholewatch.processing.backends import (
    BackendConfigError,
    InferenceBackend,
    MockBackend,
    create_backend,
    load_backend,
)
from potholewatch.processing.classifier import Classifier
from potholewatch.recording.mirror import TableMirror
from potholewatch.recording.models import ChangeEvent, ModelType
from potholewatch.recording.store import PotholeStore

logger = logging.getLogger(__name__)

TABLES = ("potholes", "vehicles", "notifications")


class PotholeService:
    """Owns every long-lived component and bridges callbacks onto the event loop."""

    def __init__(self, config: AppConfig, config_path: str | None = None,
                 store: PotholeStore | None = None,
                 grabber: FrameGrabber | None = None):
        self._config = config
        self._config_path = config_path

        self._store = store or PotholeStore(config.store.db_path)
        self._classifier = Classifier(config.classification)
        self._backend = load_backend(config.backends)
        self._grabber = grabber or FrameGrabber(
            source=config.capture.source,
            reconnect_delay=config.capture.reconnect_delay,
            grab_timeout=config.capture.grab_timeout,
        )
        self._live = LiveMonitor(
            grabber=self._grabber,
            backend=self._backend,
            classifier=self._classifier,
            store=self._store,
            config=config.live,
            capture=config.capture,
        )

        # Local mirrors, rehydrated from the store and kept current by its events
        self._mirrors = {
            "potholes": TableMirror("created_at", descending=True),
            "vehicles": TableMirror("name", descending=False),
            "notifications": TableMirror("created_at", descending=True,
                                         limit=config.store.notification_limit),
        }
        self.rehydrate()

        self._change_callbacks: list[Callable[[ChangeEvent], Any]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._store.add_change_callback(self._on_change)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def store(self) -> PotholeStore:
        return self._store

    @property
    def classifier(self) -> Classifier:
        return self._classifier

    @property
    def backend(self) -> InferenceBackend:
        return self._backend

    @property
    def live(self) -> LiveMonitor:
        return self._live

    def mirror(self, table: str) -> TableMirror:
        if table not in self._mirrors:
            raise KeyError(table)
        return self._mirrors[table]

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the asyncio event loop for thread-safe callbacks."""
        self._loop = loop

    def add_change_callback(self, callback: Callable[[ChangeEvent], Any]) -> None:
        """Register a callback for store change events."""
        self._change_callbacks.append(callback)

    def add_detection_callback(self, callback: Callable[[dict], Any]) -> None:
        self._live.add_callback(callback)

    def rehydrate(self) -> None:
        for table, mirror in self._mirrors.items():
            mirror.rehydrate(self._store.rows(
                table, limit=self._config.store.notification_limit))

    # --- detection ---

    def detect_image(self, image_data: str) -> dict[str, Any]:
        """Classify an uploaded image.

        Raises MediaError for unreadable images. Backend failures fail
        open to an empty detection list.
        """
        frame = decode_base64_image(image_data)
        height, width = frame.shape[:2]
        try:
            raw = self._backend.detect(image_data)
        except Exception:
            logger.exception("Image detection failed")
            raw = []
        detections = self._classifier.classify(raw, width, height)
        logger.info("Image %dx%d: %d detections", width, height, len(detections))
        return {
            "detections": [d.to_dict() for d in detections],
            "width": width,
            "height": height,
        }

    def model_settings(self) -> dict[str, Any]:
        cfg = self._config.backends
        return {
            "modelType": cfg.model_type,
            "modelEndpoint": cfg.model_endpoint,
            "hasApiKey": bool(cfg.api_key),
            "backend": self._backend.name,
            "mock": isinstance(self._backend, MockBackend),
        }

    def update_model_config(self, model_type: str, endpoint: str | None = None,
                            api_key: str | None = None) -> dict[str, Any]:
        """Switch the active backend and persist the selection.

        Raises ValueError for an unknown model type. Missing credentials
        substitute the mock detector, as at startup.
        """
        ModelType(model_type)
        cfg = self._config.backends
        cfg.model_type = model_type
        cfg.model_endpoint = endpoint or ""
        if api_key is not None:
            cfg.api_key = api_key

        try:
            backend = create_backend(model_type, cfg,
                                     endpoint=cfg.model_endpoint or None,
                                     api_key=cfg.api_key or None)
        except BackendConfigError as exc:
            logger.warning("Model config incomplete (%s); using mock detector", exc)
            backend = MockBackend()

        self._backend = backend
        self._live.backend = backend
        save_config_values({"model_type": model_type,
                            "model_endpoint": cfg.model_endpoint},
                           self._config_path)
        logger.info("Detection backend switched to %s", backend.name)
        return self.model_settings()

    # --- live ---

    def start_live(self) -> None:
        self._live.start()

    async def stop_live(self) -> None:
        await self._live.stop()

    # --- dashboard data ---

    def stats(self) -> dict[str, int]:
        return reports.dashboard_stats(
            self._mirrors["potholes"].rows(),
            active_vehicles=self._store.active_vehicle_count(),
            unread_notifications=self._store.unread_count(),
        )

    def report(self) -> dict[str, Any]:
        return reports.build_report(self._mirrors["potholes"].rows(),
                                    self._mirrors["vehicles"].rows())

    def close(self) -> None:
        self._store.close()

    def _on_change(self, event: ChangeEvent) -> None:
        """Apply a store change to the mirror and fan it out."""
        self._mirrors[event.table].apply(event)
        for callback in self._change_callbacks:
            try:
                if self._loop is not None and self._loop.is_running():
                    self._loop.call_soon_threadsafe(callback, event)
                else:
                    callback(event)
            except Exception:
                logger.exception("Error in change callback")
