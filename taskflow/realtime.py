"""
Per-user notification channel.

Each signed-in client keeps one websocket open on ``/ws/notifications``;
new notification rows are pushed to every socket of their recipient.
"""

import logging
from typing import Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks open websockets keyed by user id."""

    def __init__(self):
        self.connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket):
        await websocket.accept()
        self.connections.setdefault(user_id, []).append(websocket)
        logger.info("Notification socket opened for %s. Sockets for user: %d", user_id, len(self.connections[user_id]))

    def disconnect(self, user_id: str, websocket: WebSocket):
        sockets = self.connections.get(user_id, [])
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            self.connections.pop(user_id, None)
        logger.info("Notification socket closed for %s", user_id)

    def is_connected(self, user_id: str) -> bool:
        return bool(self.connections.get(user_id))

    async def send_to_user(self, user_id: str, message: dict):
        for websocket in list(self.connections.get(user_id, [])):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.error("Error pushing notification to %s: %s", user_id, e)
                self.disconnect(user_id, websocket)


manager = ConnectionManager()
