import asyncio
from typing import Dict, Iterable, Optional, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from logging_config import get_logger

logger = get_logger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict) -> bool:
    """Send JSON through a websocket, returning False if the peer is gone."""
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug(f"Failed to send websocket message: {e}")
        return False


class RoomTransport:
    """Live sockets plus the transport-level broadcast groups.

    Group membership here is what fan-out actually uses. The connection
    registry keeps its own bookkeeping; the two must always agree.
    """

    def __init__(self):
        # Format: {connection_id: websocket}
        self._sockets: Dict[str, WebSocket] = {}
        # Format: {room_id: {connection_id}}
        self._groups: Dict[str, Set[str]] = {}

    def add_socket(self, connection_id: str, websocket: WebSocket):
        self._sockets[connection_id] = websocket
        logger.debug(f"Socket {connection_id} attached ({len(self._sockets)} live sockets)")

    def remove_socket(self, connection_id: str) -> Set[str]:
        """Drop a socket and every group it was in. Returns the rooms it left."""
        self._sockets.pop(connection_id, None)
        left = set()
        for room_id in list(self._groups):
            if connection_id in self._groups[room_id]:
                self.leave(room_id, connection_id)
                left.add(room_id)
        logger.debug(f"Socket {connection_id} detached ({len(self._sockets)} live sockets)")
        return left

    def has_socket(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    def join(self, room_id: str, connection_id: str):
        self._groups.setdefault(room_id, set()).add(connection_id)

    def leave(self, room_id: str, connection_id: str):
        members = self._groups.get(room_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._groups[room_id]

    def members_of(self, room_id: str) -> Set[str]:
        return set(self._groups.get(room_id, ()))

    def groups(self) -> Dict[str, Set[str]]:
        return {room_id: set(members) for room_id, members in self._groups.items()}

    async def emit(self, connection_id: str, event: str, data: dict) -> bool:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            logger.debug(f"Dropping {event} for unknown connection {connection_id}")
            return False
        return await safe_send_json(websocket, {"event": event, "data": data})

    async def broadcast(self, room_id: str, event: str, data: dict, exclude: Optional[Iterable[str]] = None) -> int:
        """Send an event to every member of a room. Returns the number of sends."""
        skip = set(exclude or ())
        # Snapshot before awaiting so concurrent joins/leaves do not change the target set.
        targets = [conn_id for conn_id in self._groups.get(room_id, ()) if conn_id not in skip]
        if not targets:
            logger.debug(f"No recipients for {event} in room {room_id}")
            return 0
        frame = {"event": event, "data": data}
        send_tasks = []
        for conn_id in targets:
            websocket = self._sockets.get(conn_id)
            if websocket is not None:
                send_tasks.append(safe_send_json(websocket, frame))
        results = await asyncio.gather(*send_tasks, return_exceptions=True)
        sent = sum(1 for result in results if result is True)
        logger.debug(f"Broadcast {event} to {sent}/{len(targets)} connections in room {room_id}")
        return sent
