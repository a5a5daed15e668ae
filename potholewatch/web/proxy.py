"""Detection proxy endpoints: forward an image to a third-party API and reshape."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from potholewatch.config import BackendsConfig
from potholewatch.processing.backends import (
    BackendConfigError,
    CustomBackend,
    RoboflowBackend,
    create_backend,
)
from potholewatch.processing.classifier import proxy_severity
from potholewatch.recording.models import ModelType, RawDetection

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

# mock is a startup fallback only, never selectable by callers
PROXY_MODEL_TYPES = (ModelType.ROBOFLOW.value, ModelType.HUGGINGFACE.value,
                     ModelType.CUSTOM.value)


def format_detection(raw: RawDetection, label_key: str | None = "label") -> dict[str, Any]:
    """Reshape a raw detection into the dashboard's top-left box format."""
    data: dict[str, Any] = {
        "x": raw.box.xmin,
        "y": raw.box.ymin,
        "width": raw.box.width,
        "height": raw.box.height,
        "confidence": raw.score,
    }
    if label_key:
        data[label_key] = raw.label
    data["severity"] = proxy_severity(raw.score).value
    return data


def _ok(body: dict) -> JSONResponse:
    return JSONResponse(body, headers=CORS_HEADERS)


def _error(exc: Exception, where: str) -> JSONResponse:
    logger.error("Error in %s: %s", where, exc)
    message = str(exc) or "Unknown error occurred"
    return JSONResponse({"error": message}, status_code=500, headers=CORS_HEADERS)


async def _json_body(request: Request) -> dict:
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def create_proxy_router(config: BackendsConfig) -> APIRouter:
    router = APIRouter()

    @router.options("/roboflow-detect")
    @router.options("/yolo-detection")
    @router.options("/custom-pothole-detection")
    async def preflight():
        return Response(status_code=200, headers=CORS_HEADERS)

    @router.post("/roboflow-detect")
    async def roboflow_detect(request: Request):
        try:
            body = await _json_body(request)
            image_data = body.get("imageData") or ""
            model_id, version = body.get("modelId"), body.get("version")

            if not config.roboflow_api_key:
                raise BackendConfigError("ROBOFLOW_API_KEY not configured")
            if not model_id or not version:
                raise BackendConfigError("Model ID and version are required")

            backend = RoboflowBackend.for_model(
                str(model_id), str(version), config.roboflow_api_key,
                base_url=config.roboflow_base_url,
                timeout=config.request_timeout,
            )
            result = await run_in_threadpool(backend.predict, image_data)
            detections = backend.parse(result)
            logger.info("Roboflow returned %d detections", len(detections))
            return _ok({
                "detections": [format_detection(d, "class") for d in detections],
                "image": result.get("image"),
            })
        except Exception as exc:
            return _error(exc, "roboflow-detect")

    @router.post("/yolo-detection")
    async def yolo_detection(request: Request):
        try:
            body = await _json_body(request)
            model_type = body.get("modelType") or "roboflow"
            logger.info("Processing detection request for model type: %s", model_type)
            if model_type not in PROXY_MODEL_TYPES:
                logger.warning("Unsupported model type: %s", model_type)
                return _ok({"detections": []})

            backend = create_backend(
                model_type, config,
                endpoint=body.get("modelEndpoint") or None,
                api_key=body.get("apiKey") or None,
            )
            detections = await run_in_threadpool(backend.detect,
                                                  body.get("imageData") or "")
            logger.info("Detected %d objects", len(detections))
            return _ok({"detections": [format_detection(d) for d in detections]})
        except Exception as exc:
            return _error(exc, "yolo-detection")

    @router.post("/custom-pothole-detection")
    async def custom_pothole_detection(request: Request):
        try:
            body = await _json_body(request)
            if not config.custom_endpoint:
                raise BackendConfigError("Custom model endpoint not configured")
            backend = CustomBackend(
                config.custom_endpoint, config.custom_api_key or None,
                timeout=config.request_timeout, payload_key="inputs",
            )
            detections = await run_in_threadpool(backend.detect,
                                                  body.get("imageData") or "")
            return _ok({"detections": [format_detection(d, None) for d in detections]})
        except Exception as exc:
            return _error(exc, "custom-pothole-detection")

    return router
