from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List


class StatsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoomStats(StatsModel):
    connections: int
    socket_ids: List[str] = Field(default_factory=list)


class ConnectionStats(StatsModel):
    total_rooms: int = 0
    total_connections: int = 0
    per_room: Dict[str, int] = Field(default_factory=dict)
    rooms: Dict[str, RoomStats] = Field(default_factory=dict)

    @classmethod
    def from_membership(cls, membership: Dict[str, set]) -> "ConnectionStats":
        """Build the stats view from a room -> connection ids mapping."""
        rooms = {
            room_id: RoomStats(connections=len(members), socket_ids=sorted(members))
            for room_id, members in membership.items()
        }
        return cls(
            total_rooms=len(rooms),
            total_connections=sum(room.connections for room in rooms.values()),
            per_room={room_id: room.connections for room_id, room in rooms.items()},
            rooms=rooms,
        )


class ConsistencyResponse(BaseModel):
    consistent: bool
