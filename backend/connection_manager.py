from fastapi import WebSocket
from typing import Dict, List
import json
import logging

from schemas import IdeaResponse, ResponseRow, ScrollResponse

logger = logging.getLogger(__name__)

class ConnectionManager:
    def __init__(self):
        # Scroll ID -> {WebSocket: presence entry}
        self.active_connections: Dict[str, Dict[WebSocket, dict]] = {}

    async def connect(self, websocket: WebSocket, scroll_id: str, key: str, display_name: str):
        await websocket.accept()
        if scroll_id not in self.active_connections:
            self.active_connections[scroll_id] = {}
        self.active_connections[scroll_id][websocket] = {"key": key, "display_name": display_name}
        await self.broadcast_presence(scroll_id)

    def disconnect(self, websocket: WebSocket, scroll_id: str):
        if scroll_id in self.active_connections:
            self.active_connections[scroll_id].pop(websocket, None)
            if not self.active_connections[scroll_id]:
                del self.active_connections[scroll_id]

    def roster(self, scroll_id: str) -> List[dict]:
        """Connected participants in join order, one entry per presence key."""
        seen = {}
        for entry in self.active_connections.get(scroll_id, {}).values():
            seen.setdefault(entry["key"], entry)
        return list(seen.values())

    async def broadcast(self, message: dict, scroll_id: str):
        if scroll_id in self.active_connections:
            json_msg = json.dumps(message)
            # Collect failures separately, disconnect mutates the dict
            to_remove = set()
            for connection in list(self.active_connections[scroll_id]):
                try:
                    await connection.send_text(json_msg)
                except Exception:
                    logger.warning("Dropping dead connection on scroll %s", scroll_id)
                    to_remove.add(connection)

            for conn in to_remove:
                self.disconnect(conn, scroll_id)
            if to_remove and scroll_id in self.active_connections:
                await self.broadcast_presence(scroll_id)

    async def broadcast_presence(self, scroll_id: str):
        await self.broadcast({"type": "presence_sync", "users": self.roster(scroll_id)}, scroll_id)

    async def broadcast_change(self, table: str, op: str, row: dict, scroll_id: str):
        await self.broadcast({"type": "change", "table": table, "op": op, "row": row}, scroll_id)

manager = ConnectionManager()

async def publish_scroll(scroll):
    row = ScrollResponse.model_validate(scroll).model_dump(mode="json")
    await manager.broadcast_change("scrolls", "update", row, scroll.id)

async def publish_ideas(op: str, ideas):
    for idea in ideas:
        row = IdeaResponse.model_validate(idea).model_dump(mode="json")
        await manager.broadcast_change("ideas", op, row, idea.scroll_id)

async def publish_response(op: str, response):
    row = ResponseRow.model_validate(response).model_dump(mode="json")
    await manager.broadcast_change("votes", op, row, response.scroll_id)
