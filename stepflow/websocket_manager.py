from fastapi import WebSocket
from typing import Set, Any, Dict, Optional
import asyncio


class WebSocketManager:
    """Fans automation run events out to every connected UI client."""

    def __init__(self) -> None:
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._connections.add(ws)

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(ws)

    async def broadcast_json(self, message: Dict[str, Any]) -> None:
        async with self._lock:
            connections = list(self._connections)
        if not connections:
            return
        await asyncio.gather(
            *[self._safe_send(ws, message) for ws in connections],
            return_exceptions=True,
        )

    async def _safe_send(self, ws: WebSocket, message: Dict[str, Any]) -> None:
        try:
            await ws.send_json(message)
        except Exception:
            await self.disconnect(ws)

    async def send_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        await self.broadcast_json({"type": event_type, **payload})

    async def send_log(self, level: str, message: str, automation_id: Optional[int] = None) -> None:
        payload: Dict[str, Any] = {"level": level, "message": message}
        if automation_id is not None:
            payload["automation_id"] = automation_id
        await self.send_event("LOG", payload)

    async def send_status(self, automation_id: int, status: str) -> None:
        await self.send_event("STATUS", {"automation_id": automation_id, "status": status})
