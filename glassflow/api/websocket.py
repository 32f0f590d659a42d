from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from glassflow.db.engine import async_session_factory
from glassflow.services.appointment_store import AppointmentStore
from glassflow.services.auth import validate_session
from glassflow.services.tracking import TRACKING_TOKEN_RE
from glassflow.services.ws_manager import ws_manager

router = APIRouter(tags=["websocket"])


async def _authorized(appointment_id: str, token: str) -> bool:
    """Dashboard session token, or the customer's own tracking token."""
    if not token:
        return False
    async with async_session_factory() as db:
        if TRACKING_TOKEN_RE.match(token):
            appointment = await AppointmentStore(db).get_by_token(token)
            if appointment is not None:
                return appointment.id == appointment_id
        return await validate_session(token, db) is not None


@router.websocket("/api/ws/{appointment_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    appointment_id: str,
    token: str = Query(default=""),
):
    if not await _authorized(appointment_id, token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await ws_manager.connect(appointment_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        ws_manager.disconnect(appointment_id, websocket)
