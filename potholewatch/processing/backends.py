"""HTTP clients for the interchangeable object-detection backends.

Every backend turns an image (base64 string, optionally a data URI) into a
list of RawDetection.  ``predict`` returns the decoded JSON response and
``parse`` reshapes it, so callers that need extra response fields (the
Roboflow proxy returns the ``image`` block) can use the two halves.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import requests

from potholewatch.capture.stream import strip_data_uri
from potholewatch.config import BackendsConfig
from potholewatch.recording.models import BoundingBox, ModelType, RawDetection

logger = logging.getLogger(__name__)


class BackendConfigError(ValueError):
    """A backend is missing its API key or endpoint."""


class BackendError(RuntimeError):
    """The third-party detection API failed or returned garbage."""


def _number(*values: Any) -> float:
    """First value that is a number, else 0.0."""
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return 0.0


def _parse_pipeline_output(items: list[dict]) -> list[RawDetection]:
    """Parse object-detection pipeline output: [{label, score, box{xmin..}}]."""
    detections = []
    for pred in items:
        box = pred.get("box") or {}
        detections.append(RawDetection(
            label=str(pred.get("label", "")),
            score=_number(pred.get("score")),
            box=BoundingBox(
                _number(box.get("xmin")), _number(box.get("ymin")),
                _number(box.get("xmax")), _number(box.get("ymax")),
            ),
        ))
    return detections


class InferenceBackend:
    """Base class: POST an image somewhere, get raw detections back."""

    name = "backend"

    def __init__(self, endpoint: str, api_key: str | None = None,
                 timeout: float = 30.0):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout

    def detect(self, image_data: str) -> list[RawDetection]:
        return self.parse(self.predict(image_data))

    def predict(self, image_data: str) -> Any:
        raise NotImplementedError

    def parse(self, response: Any) -> list[RawDetection]:
        raise NotImplementedError

    def _post(self, url: str, **kwargs: Any) -> Any:
        """POST and decode JSON, raising BackendError on any failure."""
        try:
            response = requests.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            # the exception text carries the request URL, query api_key included
            raise BackendError(
                f"{self.name} API request failed: {type(exc).__name__}"
            ) from exc

        if not response.ok:
            logger.error("%s API error: %s %s", self.name,
                         response.status_code, response.text)
            raise BackendError(
                f"{self.name} API error: {response.status_code} {response.text}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"{self.name} API returned invalid JSON") from exc

    def __repr__(self) -> str:
        return f"{type(self).__name__}(endpoint={self.endpoint!r})"


class RoboflowBackend(InferenceBackend):
    """Hosted model platform: api_key query param, base64 form body."""

    name = "Roboflow"

    @classmethod
    def for_model(cls, model_id: str, version: str, api_key: str,
                  base_url: str = "https://detect.roboflow.com",
                  timeout: float = 30.0) -> "RoboflowBackend":
        endpoint = f"{base_url.rstrip('/')}/{model_id}/{version}"
        return cls(endpoint, api_key, timeout)

    def predict(self, image_data: str) -> Any:
        logger.info("Calling Roboflow API: %s", self.endpoint)
        return self._post(
            self.endpoint,
            params={"api_key": self.api_key},
            data=strip_data_uri(image_data),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    def parse(self, response: Any) -> list[RawDetection]:
        if not isinstance(response, dict):
            raise BackendError("Roboflow response is not an object")
        detections = []
        for pred in response.get("predictions") or []:
            # Roboflow reports box centers
            cx, cy = _number(pred.get("x")), _number(pred.get("y"))
            w, h = _number(pred.get("width")), _number(pred.get("height"))
            detections.append(RawDetection(
                label=str(pred.get("class", "")),
                score=_number(pred.get("confidence")),
                box=BoundingBox(cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2),
            ))
        return detections


class HuggingFaceBackend(InferenceBackend):
    """Transformer inference API: bearer token, raw image bytes."""

    name = "Hugging Face"

    def predict(self, image_data: str) -> Any:
        try:
            binary = base64.b64decode(strip_data_uri(image_data))
        except (binascii.Error, ValueError) as exc:
            raise BackendError("Image data is not valid base64") from exc
        return self._post(
            self.endpoint,
            data=binary,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/octet-stream",
            },
        )

    def parse(self, response: Any) -> list[RawDetection]:
        if isinstance(response, dict) and "error" in response:
            raise BackendError(f"Hugging Face API error: {response['error']}")
        return _parse_pipeline_output(response or [])


class CustomBackend(InferenceBackend):
    """User-supplied endpoint: optional bearer token, JSON body."""

    name = "Custom model"

    def __init__(self, endpoint: str, api_key: str | None = None,
                 timeout: float = 30.0, payload_key: str = "image"):
        super().__init__(endpoint, api_key, timeout)
        self.payload_key = payload_key

    def predict(self, image_data: str) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return self._post(self.endpoint, json={self.payload_key: image_data},
                          headers=headers)

    def parse(self, response: Any) -> list[RawDetection]:
        if isinstance(response, dict):
            items = response.get("detections") or response.get("predictions") or []
        else:
            items = response or []
        return [self._parse_item(pred) for pred in items]

    @staticmethod
    def _parse_item(pred: dict) -> RawDetection:
        """Accept x/y/width/height, bbox{...} or box{xmin..} layouts."""
        bbox = pred.get("bbox") or {}
        box = pred.get("box") or {}
        if box and "x" not in pred and "x" not in bbox:
            xmin, ymin = _number(box.get("xmin")), _number(box.get("ymin"))
            xmax, ymax = _number(box.get("xmax")), _number(box.get("ymax"))
        else:
            xmin = _number(pred.get("x"), bbox.get("x"))
            ymin = _number(pred.get("y"), bbox.get("y"))
            xmax = xmin + _number(pred.get("width"), bbox.get("width"))
            ymax = ymin + _number(pred.get("height"), bbox.get("height"))
        return RawDetection(
            label=str(pred.get("label") or pred.get("class") or ""),
            score=_number(pred.get("confidence"), pred.get("score")),
            box=BoundingBox(xmin, ymin, xmax, ymax),
        )


class MockBackend(InferenceBackend):
    """Canned detector used when no real backend can be configured."""

    name = "Mock"

    def __init__(self):
        super().__init__(endpoint="mock://pothole")

    def predict(self, image_data: str) -> Any:
        return [{
            "label": "pothole",
            "score": 0.8,
            "box": {"xmin": 100, "ymin": 100, "xmax": 200, "ymax": 150},
        }]

    def parse(self, response: Any) -> list[RawDetection]:
        return _parse_pipeline_output(response)


def create_backend(model_type: str, config: BackendsConfig,
                   endpoint: str | None = None,
                   api_key: str | None = None) -> InferenceBackend:
    """Build the backend for ``model_type``.

    Explicit endpoint/api_key arguments win over configured values.
    Raises BackendConfigError when required settings are missing.
    """
    try:
        kind = ModelType(model_type)
    except ValueError:
        raise BackendConfigError(f"Unknown model type: {model_type}") from None

    timeout = config.request_timeout

    if kind is ModelType.ROBOFLOW:
        key = api_key or config.roboflow_api_key
        url = endpoint or config.roboflow_endpoint
        if not key or not url:
            raise BackendConfigError("Roboflow API key or endpoint not configured")
        return RoboflowBackend(url, key, timeout)

    if kind is ModelType.HUGGINGFACE:
        key = api_key or config.huggingface_api_key
        url = endpoint or config.huggingface_endpoint
        if not key or not url:
            raise BackendConfigError("Hugging Face API key or endpoint not configured")
        return HuggingFaceBackend(url, key, timeout)

    if kind is ModelType.CUSTOM:
        key = api_key or config.custom_api_key
        url = endpoint or config.custom_endpoint
        if not url:
            raise BackendConfigError("Custom model endpoint not configured")
        return CustomBackend(url, key or None, timeout)

    return MockBackend()


def load_backend(config: BackendsConfig) -> InferenceBackend:
    """Build the configured backend, substituting MockBackend on config errors."""
    try:
        backend = create_backend(
            config.model_type, config,
            endpoint=config.model_endpoint or None,
            api_key=config.api_key or None,
        )
    except BackendConfigError as exc:
        logger.warning("Could not configure %s backend (%s); using mock detector",
                       config.model_type, exc)
        return MockBackend()
    logger.info("Using %s detection backend", backend.name)
    return backend
