"""Shared fixtures and in-memory fakes for relay tests."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi.websockets import WebSocketState

from errors import GatewayError
from multiplexer import EventMultiplexer
from registry import ConnectionRegistry
from transport import RoomTransport


class FakeGateway:
    """Records every call in order; `failures` maps method name -> error to raise."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.failures: dict[str, GatewayError] = {}
        self.next_id: Any = "msg-1"
        self.closed = False

    async def _record(self, name: str, *args: Any) -> dict[str, Any]:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]
        return {"id": self.next_id} if name.startswith("send_") else {}

    async def list_sessions(self):
        self.calls.append(("list_sessions",))
        return [{"name": "s1", "status": "WORKING"}]

    async def get_session_status(self, session_id):
        return await self._record("get_session_status", session_id)

    async def get_chat_info(self, chat_id, session_id):
        return await self._record("get_chat_info", chat_id, session_id)

    async def send_text(self, chat_id, text, session_id):
        return await self._record("send_text", chat_id, text, session_id)

    async def send_buttons(self, chat_id, header, body, footer, buttons, session_id, header_image=None):
        return await self._record("send_buttons", chat_id, header, body, footer, buttons, session_id, header_image)

    async def send_seen(self, chat_id, message_id, session_id, participant=None):
        return await self._record("send_seen", chat_id, message_id, session_id, participant)

    async def start_typing(self, chat_id, session_id):
        return await self._record("start_typing", chat_id, session_id)

    async def stop_typing(self, chat_id, session_id):
        return await self._record("stop_typing", chat_id, session_id)

    async def aclose(self):
        self.closed = True

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if name is None or frame["event"] == name]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture()
def transport() -> RoomTransport:
    return RoomTransport()


@pytest.fixture()
def multiplexer(registry, transport, gateway) -> EventMultiplexer:
    return EventMultiplexer(registry, transport, gateway)


@pytest.fixture()
def connect(multiplexer):
    """Attach a DummyWebSocket under the given connection id."""

    def _connect(connection_id: str) -> DummyWebSocket:
        websocket = DummyWebSocket()
        multiplexer.connect(connection_id, websocket)
        return websocket

    return _connect
