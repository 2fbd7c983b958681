from errors import RegistryDesyncError
from logging_config import get_logger
from registry import ConnectionRegistry
from schemas.stats import ConnectionStats
from transport import RoomTransport

logger = get_logger(__name__)


class StatsReporter:
    """Connection and room counts, from the registry and from the live transport."""

    def __init__(self, registry: ConnectionRegistry, transport: RoomTransport):
        self.registry = registry
        self.transport = transport

    def get_connection_stats(self) -> ConnectionStats:
        return self.registry.stats()

    def get_transport_stats(self) -> ConnectionStats:
        return ConnectionStats.from_membership(self.transport.groups())

    def verify_room(self, room_id: str):
        registered = set(self.registry.members_of(room_id))
        live = self.transport.members_of(room_id)
        if registered != live:
            raise RegistryDesyncError(
                f"Room {room_id} membership diverged",
                details={
                    "registryOnly": sorted(registered - live),
                    "transportOnly": sorted(live - registered),
                },
            )

    def verify_consistency(self):
        registry_rooms = self.get_connection_stats().per_room
        transport_rooms = self.get_transport_stats().per_room
        for room_id in set(registry_rooms) | set(transport_rooms):
            self.verify_room(room_id)

    def is_consistent(self) -> bool:
        try:
            self.verify_consistency()
        except RegistryDesyncError as e:
            logger.critical(f"Registry desync detected: {e.message} {e.details}")
            return False
        return True
