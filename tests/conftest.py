"""Shared test fixtures: raw detections, synthetic frames, fake backends."""

from __future__ import annotations

import base64

import cv2
import numpy as np
import pytest

from potholewatch.config import AppConfig, ClassificationConfig, LiveConfig
from potholewatch.processing.backends import InferenceBackend
from potholewatch.processing.classifier import Classifier
from potholewatch.recording.models import BoundingBox, RawDetection
from potholewatch.recording.store import PotholeStore


def raw(label: str, score: float, xmin: float = 10, ymin: float = 10,
        xmax: float = 110, ymax: float = 90) -> RawDetection:
    return RawDetection(label=label, score=score,
                        box=BoundingBox(xmin, ymin, xmax, ymax))


def make_frame(width: int = 640, height: int = 480) -> np.ndarray:
    """Create a mid-gray BGR frame."""
    return np.full((height, width, 3), 128, dtype=np.uint8)


def frame_to_base64(frame: np.ndarray, data_uri: bool = False) -> str:
    ok, buffer = cv2.imencode(".jpg", frame)
    assert ok
    encoded = base64.b64encode(buffer.tobytes()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}" if data_uri else encoded


class FakeBackend(InferenceBackend):
    """Returns a fixed list of raw detections, or raises if told to."""

    name = "Fake"

    def __init__(self, detections: list[RawDetection] | None = None,
                 error: Exception | None = None):
        super().__init__(endpoint="fake://")
        self.detections = detections or []
        self.error = error
        self.calls = 0

    def predict(self, image_data: str):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.detections

    def parse(self, response):
        return list(response)


class FakeGrabber:
    """Stands in for FrameGrabber; serves frames from a list."""

    def __init__(self, frames: list[np.ndarray | None] | None = None):
        self.frames = list(frames or [])
        self.started = False
        self.stopped = False

    @property
    def is_connected(self) -> bool:
        return self.started

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def get_frame(self):
        if not self.frames:
            return None, 0
        frame = self.frames.pop(0) if len(self.frames) > 1 else self.frames[0]
        return (None, 0) if frame is None else (frame, 1)


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code: int = 200, text: str = ""):
        self._payload = payload
        self.status_code = status_code
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


@pytest.fixture
def classification_config() -> ClassificationConfig:
    return ClassificationConfig()


@pytest.fixture
def classifier(classification_config) -> Classifier:
    return Classifier(classification_config)


@pytest.fixture
def live_config() -> LiveConfig:
    return LiveConfig(cadence_ms=10)


@pytest.fixture
def store(tmp_path) -> PotholeStore:
    s = PotholeStore(str(tmp_path / "potholes.db"))
    yield s
    s.close()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    config = AppConfig()
    config.store.db_path = str(tmp_path / "app.db")
    config.backends.model_type = "mock"
    return config


@pytest.fixture
def post_calls(monkeypatch):
    """Patch requests.post; queue responses in ``post_calls.responses``."""

    class Recorder:
        def __init__(self):
            self.calls = []
            self.responses = []

        def __call__(self, url, **kwargs):
            self.calls.append((url, kwargs))
            if not self.responses:
                return FakeResponse([])
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

    recorder = Recorder()
    monkeypatch.setattr("potholewatch.processing.backends.requests.post", recorder)
    return recorder
