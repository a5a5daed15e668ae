"""WebSocket endpoints for realtime table changes and live detections."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from potholewatch.pipeline import TABLES, PotholeService
from potholewatch.recording.models import ChangeEvent

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks WebSocket clients per channel and broadcasts JSON to them."""

    def __init__(self):
        self.channels: dict[str, list[WebSocket]] = {}

    async def connect(self, channel: str, ws: WebSocket) -> None:
        await ws.accept()
        self.channels.setdefault(channel, []).append(ws)
        logger.info("Client connected to %s (%d total)", channel,
                    len(self.channels[channel]))

    def disconnect(self, channel: str, ws: WebSocket) -> None:
        clients = self.channels.get(channel, [])
        if ws in clients:
            clients.remove(ws)
        logger.info("Client disconnected from %s (%d remaining)", channel,
                    len(clients))

    async def broadcast(self, channel: str, data: dict) -> None:
        """Send a JSON message to every client on a channel."""
        message = json.dumps(data)
        disconnected = []
        for ws in list(self.channels.get(channel, [])):
            try:
                await ws.send_text(message)
            except Exception:
                disconnected.append(ws)
        for ws in disconnected:
            self.disconnect(channel, ws)


async def _hold_open(ws: WebSocket) -> None:
    """Keep the connection alive; messages are pushed via broadcast."""
    while True:
        await ws.receive_text()


def _schedule(manager: ConnectionManager, channel: str, data: dict) -> None:
    """Queue a broadcast on the running loop; no loop means no clients."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    loop.create_task(manager.broadcast(channel, data))


def create_ws_router(service: PotholeService) -> APIRouter:
    router = APIRouter()
    manager = ConnectionManager()

    def on_change(event: ChangeEvent) -> None:
        _schedule(manager, f"changes:{event.table}", event.to_dict())

    def on_detections(data: dict) -> None:
        _schedule(manager, "detections", data)

    service.add_change_callback(on_change)
    service.add_detection_callback(on_detections)

    @router.websocket("/ws/changes/{table}")
    async def ws_changes(ws: WebSocket, table: str):
        """Snapshot of the table on connect, then row-level changes."""
        if table not in TABLES:
            await ws.close(code=1008)
            return
        channel = f"changes:{table}"
        await manager.connect(channel, ws)
        try:
            # Reconnecting clients rehydrate from this snapshot
            await ws.send_text(json.dumps({
                "type": "snapshot",
                "table": table,
                "rows": service.mirror(table).rows(),
            }))
            await _hold_open(ws)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Changes WebSocket error")
        finally:
            manager.disconnect(channel, ws)

    @router.websocket("/ws/detections")
    async def ws_detections(ws: WebSocket):
        """Per-tick live detections and the trailing overlay history."""
        await manager.connect("detections", ws)
        try:
            await _hold_open(ws)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Detections WebSocket error")
        finally:
            manager.disconnect("detections", ws)

    return router
