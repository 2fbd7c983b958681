import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

from pydantic import ValidationError as PayloadError

from constants import DEFAULT_MESSAGE_TYPE, SUPPORTED_MESSAGE_TYPES
from errors import GatewayError, RegistryDesyncError, RelayError, UnsupportedTypeError, ValidationError
from gateway import MessagingGateway
from logging_config import get_logger
from registry import ConnectionRegistry
from room_keys import resolve_room
from schemas.events import JoinSessionAction, MarkAsSeenAction, SendMessageAction, TypingAction
from schemas.stats import ConnectionStats
from stats import StatsReporter
from transport import RoomTransport

logger = get_logger(__name__)


class ConnectionStatus(str, Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


@dataclass
class RoomBinding:
    session_id: str
    chat_id: Optional[str]
    room_id: str


@dataclass
class ConnectionState:
    """What the multiplexer knows about one live connection."""

    connection_id: str
    status: ConnectionStatus = ConnectionStatus.UNBOUND
    # Room set by the most recent join-session; cleared by leave-session.
    binding: Optional[RoomBinding] = None
    # Every room this connection is still a member of, keyed by room id.
    rooms: Dict[str, RoomBinding] = field(default_factory=dict)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse(model, data: Any):
    try:
        return model.model_validate(data or {})
    except PayloadError as e:
        raise ValidationError("Invalid payload", details=e.errors(include_url=False, include_context=False)) from e


def _gateway_failure(message: str, error: GatewayError) -> GatewayError:
    details = error.details if error.details is not None else error.message
    return GatewayError(message, status_code=error.status_code, details=details)


def _message_id(response: Any) -> str:
    message_id = response.get("id") if isinstance(response, dict) else None
    if isinstance(message_id, dict):
        message_id = message_id.get("_serialized") or message_id.get("id")
    return message_id or uuid.uuid4().hex


class EventMultiplexer:
    """Routes client actions and provider events onto (session, chat) rooms.

    Handlers run on the event loop and suspend only while awaiting the gateway
    or a socket send. Registry and transport group changes are made together
    with no await in between, so they cannot drift apart through interleaving.
    Two sends to the same chat may still interleave their typing indicators.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        transport: RoomTransport,
        gateway: MessagingGateway,
        reporter: Optional[StatsReporter] = None,
    ):
        self.registry = registry
        self.transport = transport
        self.gateway = gateway
        self.reporter = reporter or StatsReporter(registry, transport)
        self._connections: Dict[str, ConnectionState] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._handlers = {
            "join-session": self.join_session,
            "leave-session": self.leave_session,
            "send-message": self.send_message,
            "mark-as-seen": self.mark_as_seen,
            "start-typing": self.start_typing,
            "stop-typing": self.stop_typing,
        }

    # -- connection lifecycle -------------------------------------------------

    def connect(self, connection_id: str, websocket) -> ConnectionState:
        self.transport.add_socket(connection_id, websocket)
        state = ConnectionState(connection_id=connection_id)
        self._connections[connection_id] = state
        logger.info(f"Client connected: {connection_id}")
        return state

    def state_of(self, connection_id: str) -> Optional[ConnectionState]:
        return self._connections.get(connection_id)

    async def disconnect(self, connection_id: str):
        """Transport-driven teardown; in-flight actions are left to finish."""
        logger.info(f"Client disconnected: {connection_id}")
        state = self._connections.pop(connection_id, None)
        self.transport.remove_socket(connection_id)
        if state is None:
            return
        for room_id in state.rooms:
            self.registry.leave(room_id, connection_id)
        state.status = ConnectionStatus.CLOSED
        state.binding = None

        for room_id, binding in state.rooms.items():
            self._check_room(room_id)
            await self.transport.broadcast(room_id, "user-disconnected", {
                "socketId": connection_id,
                "sessionId": binding.session_id,
                "chatId": binding.chat_id,
            }, exclude=[connection_id])

    def dispatch(self, connection_id: str, event: str, data: Any = None) -> Optional[asyncio.Task]:
        """Run one client action as its own task so actions can overlap."""
        if connection_id not in self._connections:
            logger.debug(f"Dropping {event} from closed connection {connection_id}")
            return None
        task = asyncio.create_task(self.handle(connection_id, event, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self):
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle(self, connection_id: str, event: str, data: Any = None):
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"Ignoring unknown event {event!r} from connection {connection_id}")
            return
        if connection_id not in self._connections:
            logger.debug(f"Dropping {event} from closed connection {connection_id}")
            return
        try:
            await handler(connection_id, data if data is not None else {})
        except RegistryDesyncError as e:
            logger.critical(f"Registry desync while handling {event} for {connection_id}: {e.message} {e.details}")
        except RelayError as e:
            logger.warning(f"{event} from connection {connection_id} failed: {e.message}")
            await self.transport.emit(connection_id, "error", e.to_event())
        except Exception as e:
            logger.error(f"Unexpected error handling {event} for {connection_id}: {e}", exc_info=True)
            await self.transport.emit(connection_id, "error", {"message": f"Error handling {event}"})

    def _check_room(self, room_id: str):
        try:
            self.reporter.verify_room(room_id)
        except RegistryDesyncError as e:
            logger.critical(f"Registry desync: {e.message} {e.details}")

    # -- room membership ------------------------------------------------------

    async def join_session(self, connection_id: str, data: dict):
        action = _parse(JoinSessionAction, data)
        if not action.session_id:
            raise ValidationError("sessionId is required")
        room_id = resolve_room(action.session_id, action.chat_id)
        binding = RoomBinding(session_id=action.session_id, chat_id=action.chat_id, room_id=room_id)

        state = self._connections[connection_id]
        self.transport.join(room_id, connection_id)
        self.registry.join(room_id, connection_id)
        state.binding = binding
        state.rooms[room_id] = binding
        state.status = ConnectionStatus.BOUND
        self._check_room(room_id)
        logger.info(f"Client {connection_id} joined room: {room_id}")

        await self.transport.emit(connection_id, "joined-session", {
            "sessionId": action.session_id,
            "chatId": action.chat_id,
            "roomId": room_id,
            "message": "Connected to session",
        })
        await self.transport.broadcast(room_id, "user-joined", {
            "socketId": connection_id,
            "sessionId": action.session_id,
            "chatId": action.chat_id,
        }, exclude=[connection_id])

    async def leave_session(self, connection_id: str, data: dict):
        state = self._connections.get(connection_id)
        if state is None or state.binding is None:
            return
        binding = state.binding
        self.transport.leave(binding.room_id, connection_id)
        self.registry.leave(binding.room_id, connection_id)
        state.rooms.pop(binding.room_id, None)
        state.binding = None
        state.status = ConnectionStatus.UNBOUND
        self._check_room(binding.room_id)
        logger.info(f"Client {connection_id} left room: {binding.room_id}")

        await self.transport.broadcast(binding.room_id, "user-left", {
            "socketId": connection_id,
            "sessionId": binding.session_id,
            "chatId": binding.chat_id,
        }, exclude=[connection_id])

    # -- message actions ------------------------------------------------------

    async def send_message(self, connection_id: str, data: dict):
        action = _parse(SendMessageAction, data)
        if not (action.session_id and action.chat_id and action.text):
            raise ValidationError("sessionId, chatId and text are required")
        message_type = DEFAULT_MESSAGE_TYPE if action.message_type is None else action.message_type
        if message_type not in SUPPORTED_MESSAGE_TYPES:
            raise UnsupportedTypeError(f"Unsupported message type: {message_type}")
        room_id = resolve_room(action.session_id, action.chat_id)

        try:
            await self.gateway.start_typing(action.chat_id, action.session_id)
            if message_type == "buttons":
                response = await self.gateway.send_buttons(
                    action.chat_id,
                    action.header,
                    action.body,
                    action.footer,
                    action.buttons,
                    action.session_id,
                    action.header_image,
                )
            else:
                response = await self.gateway.send_text(action.chat_id, action.text, action.session_id)
            await self.gateway.stop_typing(action.chat_id, action.session_id)
        except Exception as e:
            await self._stop_typing_quietly(action.chat_id, action.session_id)
            if isinstance(e, GatewayError):
                raise _gateway_failure("Error sending message", e) from e
            raise

        sent_message = {
            "id": _message_id(response),
            "sessionId": action.session_id,
            "chatId": action.chat_id,
            "text": action.text,
            "messageType": message_type,
            "timestamp": _now(),
            "direction": "outbound",
            "status": "sent",
            **data,
        }
        await self.transport.broadcast(room_id, "message-sent", sent_message)
        logger.info(f"Message sent to {action.chat_id} in room {room_id}")

    async def _stop_typing_quietly(self, chat_id: str, session_id: str):
        try:
            await self.gateway.stop_typing(chat_id, session_id)
        except Exception as e:
            logger.error(f"Could not clear typing state for {chat_id}: {e}", exc_info=True)

    async def mark_as_seen(self, connection_id: str, data: dict):
        action = _parse(MarkAsSeenAction, data)
        if not (action.session_id and action.chat_id and action.message_id):
            raise ValidationError("sessionId, chatId and messageId are required")
        room_id = resolve_room(action.session_id, action.chat_id)

        try:
            await self.gateway.send_seen(action.chat_id, action.message_id, action.session_id, action.participant)
        except GatewayError as e:
            raise _gateway_failure("Error marking message as seen", e) from e

        await self.transport.broadcast(room_id, "message-seen", {
            "sessionId": action.session_id,
            "chatId": action.chat_id,
            "messageId": action.message_id,
            "participant": action.participant,
            "timestamp": _now(),
        })
        logger.debug(f"Message {action.message_id} marked as seen in room {room_id}")

    async def start_typing(self, connection_id: str, data: dict):
        await self._typing(connection_id, data, started=True)

    async def stop_typing(self, connection_id: str, data: dict):
        await self._typing(connection_id, data, started=False)

    async def _typing(self, connection_id: str, data: dict, started: bool):
        action = _parse(TypingAction, data)
        if not (action.session_id and action.chat_id):
            raise ValidationError("sessionId and chatId are required")
        room_id = resolve_room(action.session_id, action.chat_id)

        try:
            if started:
                await self.gateway.start_typing(action.chat_id, action.session_id)
            else:
                await self.gateway.stop_typing(action.chat_id, action.session_id)
        except GatewayError as e:
            message = "Error starting typing indicator" if started else "Error stopping typing indicator"
            raise _gateway_failure(message, e) from e

        await self.transport.broadcast(room_id, "user-typing" if started else "user-stopped-typing", {
            "sessionId": action.session_id,
            "chatId": action.chat_id,
            "socketId": connection_id,
            "timestamp": _now(),
        }, exclude=[connection_id])

    # -- entry points for the webhook / HTTP layer ----------------------------

    async def notify_new_message(self, session_id: str, chat_id: Optional[str], message_data: dict) -> str:
        room_id = resolve_room(session_id, chat_id)
        await self.transport.broadcast(room_id, "new-message", {
            **message_data,
            "sessionId": session_id,
            "chatId": chat_id,
            "direction": "inbound",
            "timestamp": message_data.get("timestamp") or _now(),
        })
        logger.info(f"New message notified to room: {room_id}")
        return room_id

    async def notify_status_change(self, session_id: str, chat_id: Optional[str], status_data: dict) -> str:
        room_id = resolve_room(session_id, chat_id)
        await self.transport.broadcast(room_id, "status-change", {
            **status_data,
            "sessionId": session_id,
            "chatId": chat_id,
            "timestamp": status_data.get("timestamp") or _now(),
        })
        logger.info(f"Status change notified to room: {room_id}")
        return room_id

    def get_connection_stats(self) -> ConnectionStats:
        return self.reporter.get_connection_stats()

    def get_transport_stats(self) -> ConnectionStats:
        return self.reporter.get_transport_stats()

    def verify_consistency(self) -> bool:
        return self.reporter.is_consistent()
