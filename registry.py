from typing import Dict, FrozenSet, Set

from logging_config import get_logger
from schemas.stats import ConnectionStats

logger = get_logger(__name__)


class ConnectionRegistry:
    """In-memory room membership: room id -> set of connection ids.

    Every method is synchronous and never awaits, so a single call is atomic
    with respect to other handlers running on the event loop.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[str]] = {}

    def join(self, room_id: str, connection_id: str):
        members = self._rooms.setdefault(room_id, set())
        if connection_id in members:
            logger.debug(f"Connection {connection_id} already registered in room {room_id}")
            return
        members.add(connection_id)
        logger.debug(f"Connection {connection_id} registered in room {room_id} ({len(members)} members)")

    def leave(self, room_id: str, connection_id: str):
        members = self._rooms.get(room_id)
        if not members:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room_id]
            logger.debug(f"Room {room_id} is empty, removed from registry")
        else:
            logger.debug(f"Connection {connection_id} removed from room {room_id} ({len(members)} members)")

    def members_of(self, room_id: str) -> FrozenSet[str]:
        return frozenset(self._rooms.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return {room_id for room_id, members in self._rooms.items() if connection_id in members}

    def stats(self) -> ConnectionStats:
        return ConnectionStats.from_membership(self._rooms)
