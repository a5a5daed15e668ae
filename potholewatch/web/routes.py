"""HTTP routes: potholes, vehicles, notifications, stats, detection, settings."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from potholewatch.capture.stream import MediaError
from potholewatch.pipeline import PotholeService
from potholewatch.recording.store import POTHOLE_UPDATABLE, RecordNotFound

logger = logging.getLogger(__name__)


def _not_found(kind: str, record_id: str) -> JSONResponse:
    return JSONResponse({"error": f"{kind} {record_id} not found"}, 404)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, 400)


async def _body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def create_router(service: PotholeService) -> APIRouter:
    router = APIRouter()
    store = service.store

    # --- potholes ---

    @router.get("/api/potholes")
    async def api_potholes(severity: str | None = None, status: str | None = None):
        rows = service.mirror("potholes").rows()
        if severity:
            rows = [r for r in rows if r["severity"] == severity]
        if status:
            rows = [r for r in rows if r["status"] == status]
        return JSONResponse(rows)

    @router.get("/api/potholes/{pothole_id}")
    async def api_pothole(pothole_id: str):
        try:
            return JSONResponse(store.get_pothole(pothole_id).to_dict())
        except RecordNotFound:
            return _not_found("Pothole", pothole_id)

    @router.post("/api/potholes")
    async def api_create_pothole(request: Request):
        body = await _body(request)
        required = ("latitude", "longitude", "severity", "title",
                    "description", "vehicle_id")
        missing = [key for key in required if key not in body]
        if missing:
            return _bad_request(f"Missing fields: {', '.join(missing)}")
        try:
            pothole = store.create_pothole(
                latitude=float(body["latitude"]),
                longitude=float(body["longitude"]),
                severity=body["severity"],
                title=str(body["title"]),
                description=str(body["description"]),
                vehicle_id=str(body["vehicle_id"]),
                image_url=body.get("image_url"),
                reported_at=body.get("reported_at"),
            )
        except (TypeError, ValueError) as exc:
            return _bad_request(str(exc))
        return JSONResponse(pothole.to_dict(), 201)

    @router.patch("/api/potholes/{pothole_id}")
    async def api_update_pothole(pothole_id: str, request: Request):
        body = await _body(request)
        fields = {k: v for k, v in body.items() if k in POTHOLE_UPDATABLE}
        if not fields:
            return _bad_request("No updatable fields given")
        try:
            pothole = store.update_pothole(pothole_id, **fields)
        except RecordNotFound:
            return _not_found("Pothole", pothole_id)
        except ValueError as exc:
            return _bad_request(str(exc))
        return JSONResponse(pothole.to_dict())

    @router.post("/api/potholes/{pothole_id}/repair")
    async def api_mark_repaired(pothole_id: str):
        try:
            pothole = store.mark_repaired(pothole_id)
        except RecordNotFound:
            return _not_found("Pothole", pothole_id)
        return JSONResponse(pothole.to_dict())

    # --- vehicles ---

    @router.get("/api/vehicles")
    async def api_vehicles():
        rows = service.mirror("vehicles").rows()
        return JSONResponse({
            "vehicles": rows,
            "active": sum(1 for v in rows if v["is_active"]),
        })

    @router.post("/api/vehicles")
    async def api_create_vehicle(request: Request):
        body = await _body(request)
        if not body.get("vehicle_id") or not body.get("name"):
            return _bad_request("vehicle_id and name are required")
        vehicle = store.create_vehicle(
            str(body["vehicle_id"]), str(body["name"]),
            is_active=bool(body.get("is_active", False)),
        )
        return JSONResponse(vehicle.to_dict(), 201)

    @router.post("/api/vehicles/{vehicle_pk}/status")
    async def api_vehicle_status(vehicle_pk: str, request: Request):
        body = await _body(request)
        try:
            vehicle = store.update_vehicle_status(
                vehicle_pk, bool(body.get("is_active", True)))
        except RecordNotFound:
            return _not_found("Vehicle", vehicle_pk)
        return JSONResponse(vehicle.to_dict())

    # --- notifications ---

    @router.get("/api/notifications")
    async def api_notifications(limit: int | None = None):
        max_limit = service.config.store.notification_limit
        limit = min(max(limit or max_limit, 1), max_limit)
        items = store.list_notifications(limit)
        return JSONResponse({
            "notifications": [n.to_dict() for n in items],
            "unread": store.unread_count(),
        })

    @router.post("/api/notifications/read-all")
    async def api_mark_all_read():
        count = store.mark_all_read()
        return JSONResponse({"status": "ok", "updated": count})

    @router.post("/api/notifications/{notification_id}/read")
    async def api_mark_read(notification_id: str):
        try:
            notification = store.mark_read(notification_id)
        except RecordNotFound:
            return _not_found("Notification", notification_id)
        return JSONResponse(notification.to_dict())

    # --- stats & reports ---

    @router.get("/api/stats")
    async def api_stats():
        return JSONResponse(service.stats())

    @router.get("/api/reports")
    async def api_reports():
        return JSONResponse(service.report())

    # --- detection ---

    @router.post("/api/detect")
    async def api_detect(request: Request):
        body = await _body(request)
        image_data = body.get("imageData")
        if not image_data or not isinstance(image_data, str):
            return _bad_request("imageData is required")
        try:
            result = await run_in_threadpool(service.detect_image, image_data)
        except MediaError as exc:
            return _bad_request(str(exc))
        return JSONResponse(result)

    # --- settings ---

    @router.get("/api/settings/model")
    async def api_model_settings():
        return JSONResponse(service.model_settings())

    @router.post("/api/settings/model")
    async def api_update_model_settings(request: Request):
        body = await _body(request)
        model_type = body.get("modelType")
        if not model_type:
            return _bad_request("modelType is required")
        try:
            settings = service.update_model_config(
                str(model_type),
                endpoint=body.get("modelEndpoint"),
                api_key=body.get("apiKey"),
            )
        except ValueError:
            return _bad_request(f"Invalid model type: {model_type}")
        return JSONResponse({"status": "ok", "settings": settings})

    # --- live camera ---

    @router.get("/api/live")
    async def api_live():
        return JSONResponse({
            "stats": service.live.stats,
            "history": [d.to_dict() for d in service.live.history],
        })

    @router.post("/api/live/start")
    async def api_live_start():
        service.start_live()
        return JSONResponse({"status": "ok", "streaming": True})

    @router.post("/api/live/stop")
    async def api_live_stop():
        await service.stop_live()
        return JSONResponse({"status": "ok", "streaming": False})

    @router.post("/api/live/location")
    async def api_live_location(request: Request):
        body = await _body(request)
        try:
            service.live.set_location(float(body["lat"]), float(body["lng"]))
        except (KeyError, TypeError, ValueError):
            return _bad_request("lat and lng are required numbers")
        return JSONResponse({"status": "ok", "location": service.live.stats["location"]})

    return router
