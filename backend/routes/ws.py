from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from sqlalchemy import select
import logging

from connection_manager import manager
from database import SessionLocal
from models import Scroll

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])

@router.websocket("/ws/{scroll_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    scroll_id: str,
    key: str,
    user_id: str,
    name: str = "",
):
    # Validate the share key before joining the channel
    async with SessionLocal() as db:
        result = await db.execute(select(Scroll.id).where(Scroll.id == scroll_id, Scroll.key == key))
        if result.scalar_one_or_none() is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await manager.connect(websocket, scroll_id, user_id, name or user_id)
    try:
        while True:
            # We mostly push FROM server; clients may send "ping" heartbeats
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        manager.disconnect(websocket, scroll_id)
        await manager.broadcast_presence(scroll_id)
