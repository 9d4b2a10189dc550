from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from orb.orchestrator.events import AudioLevels
from orb.telemetry.logging import get_logger


class FloatingUIBridge:
    """Broadcasts turn state, notices and audio levels to connected UI clients."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._router = APIRouter()
        self._router.add_api_websocket_route("/ws/state", self._websocket_handler)
        self._lock = asyncio.Lock()
        self._last_levels: AudioLevels | None = None
        self._logger = get_logger(__name__)

    @property
    def router(self) -> APIRouter:
        return self._router

    async def _websocket_handler(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        self._logger.info("ui.client.connected", count=len(self._clients))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            async with self._lock:
                self._clients.discard(websocket)
            self._logger.info("ui.client.disconnected", count=len(self._clients))

    async def publish_state(self, state: str, payload: dict[str, Any] | None = None) -> None:
        message = {"state": state, "payload": payload or {}}
        async with self._lock:
            send_tasks = [client.send_json(message) for client in self._clients]
        if send_tasks:
            await asyncio.gather(*send_tasks, return_exceptions=True)

    async def notify(self, message: str, level: str = "error") -> None:
        await self.publish_state("NOTICE", {"level": level, "message": message})

    def publish_levels(self, levels: AudioLevels) -> None:
        """Level-mixer listener; runs on the event loop thread."""
        if levels == self._last_levels:
            return
        self._last_levels = levels
        if not self._clients:
            return
        asyncio.get_running_loop().create_task(self.publish_state("LEVELS", levels.to_dict()))


__all__ = ["FloatingUIBridge"]
