"""WebSocket connection manager for realtime appointment updates."""

from __future__ import annotations

import json
from fastapi import WebSocket


class ConnectionManager:
    def __init__(self):
        self._connections: dict[str, list[WebSocket]] = {}

    async def connect(self, appointment_id: str, websocket: WebSocket):
        await websocket.accept()
        self._connections.setdefault(appointment_id, []).append(websocket)

    def disconnect(self, appointment_id: str, websocket: WebSocket):
        conns = self._connections.get(appointment_id, [])
        if websocket in conns:
            conns.remove(websocket)

    async def broadcast(self, appointment_id: str, message: dict):
        """Send a JSON message to all clients watching an appointment."""
        conns = self._connections.get(appointment_id, [])
        dead = []
        for ws in conns:
            try:
                await ws.send_text(json.dumps(message, default=str))
            except Exception:
                dead.append(ws)
        for ws in dead:
            conns.remove(ws)


ws_manager = ConnectionManager()
